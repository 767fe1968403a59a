#!/usr/bin/env python3
#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Emulate the Internet Computer app on a Ledger device.
#
# - keys are NOT BIP-32 derived: each path gets sha256(seed + path) as its secret
# - no screen: everything is approved unless told otherwise (see force_sw)
# - can be used in-process (tests) or as a TCP APDU server, Speculos framing
#
import socket, struct, click, traceback
from hashlib import sha256
from coincurve import PrivateKey
from coincurve.ecdsa import der_to_cdata, serialize_compact
from hexdump import hexdump
from icledger.constants import *
from icledger.exceptions import DecodeError
from icledger.principal import Principal
from icledger.request import cbor_decode, request_id_of, signing_digest
from icledger.transport import LedgerTransport, TransportProvider
from icledger.utils import B2A

# Print more?
DEBUG = True

DEFAULT_SEED = b'icledger emulator'

# what we pretend to support
DEFAULT_TOKENS = [
    (bytes.fromhex('00000000000000020101'), 'ICP', 8),
    (bytes.fromhex('00000000020000010101'), 'ckBTC', 8),
]

# instructions that arrive in chunks: path first, then payload
CHUNKED = { INS_SIGN_SECP256K1, INS_SAVE_CONSENT, INS_SAVE_CANISTER_CALL,
            INS_SAVE_ROOT_KEY, INS_SIGN_WITH_CONTEXT }

class AppError(RuntimeError):
    # provides status word
    def __init__(self, msg, sw):
        super().__init__(msg)
        self.sw = sw


class ICPAppState:
    def __init__(self, seed=DEFAULT_SEED, version=(2, 4, 9), tokens=None):
        self.seed = seed
        self.version = version
        self.tokens = list(DEFAULT_TOKENS if tokens is None else tokens)

        # knobs for tests
        self.locked = False
        self.test_mode = False
        self.force_sw = {}              # ins => status word to return instead
        self.short_signature = False    # truncate r||s
        self.wrong_principal = False    # lie about principal text

        # what happened
        self.opened = 0
        self.closed = 0
        self.last_special_flag = None
        self.last_context = None
        self.sign_count = 0

        self._chunks = {}
        self._context = {}

    def __repr__(self):
        return '<ICPAppState v%d.%d.%d seed=%r>' % (*self.version, self.seed)

    @property
    def open_sessions(self):
        return self.opened - self.closed

    def swap_device(self, seed):
        # pretend someone plugged in another device (different keys)
        self.seed = seed

    def privkey(self, path_bytes) -> PrivateKey:
        return PrivateKey(sha256(self.seed + path_bytes).digest())

    def pubkey(self, path_bytes) -> bytes:
        return self.privkey(path_bytes).public_key.format(compressed=False)

    def connect(self):
        self.opened += 1
        return EmulatedConnection(self)

    def handle(self, cla, ins, p1, p2, data):
        # one APDU => (status word, response body)
        try:
            if cla != ICP_CLA:
                raise AppError('wrong CLA', SW_CLA_NOT_SUPPORTED)
            if self.locked:
                raise AppError('locked', SW_DEVICE_LOCKED)
            if ins in self.force_sw:
                raise AppError('forced', self.force_sw[ins])

            if ins in CHUNKED:
                return SW_OKAY, self._chunked(ins, p1, p2, data)

            method = getattr(self, 'cmd_%02x' % ins, None)
            if not method:
                raise AppError('unknown ins', SW_INS_NOT_SUPPORTED)

            return SW_OKAY, method(p1, p2, data)

        except AppError as exc:
            return exc.sw, b''

    def _chunked(self, ins, p1, p2, data):
        if p1 == PAYLOAD_INIT:
            if len(data) != 20:
                raise AppError('bad path', SW_DATA_INVALID)
            self._chunks[ins] = (data, p2, bytearray())
            return b''

        if ins not in self._chunks:
            raise AppError('no init chunk', SW_CONDITIONS_NOT_MET)

        path, flag, buf = self._chunks[ins]
        buf.extend(data)
        if p1 == PAYLOAD_ADD:
            return b''
        if p1 != PAYLOAD_LAST:
            raise AppError('bad p1', SW_DATA_INVALID)

        del self._chunks[ins]
        payload = bytes(buf)

        if ins == INS_SIGN_SECP256K1:
            self.last_special_flag = flag
            return self._sign(path, payload)

        if ins == INS_SIGN_WITH_CONTEXT:
            if 'consent' not in self._context or 'call' not in self._context:
                raise AppError('missing context', SW_CONDITIONS_NOT_MET)
            ctx, self._context = self._context, {}
            ctx['certificate'] = payload
            self.last_context = ctx
            return self._sign(path, ctx['call'])

        key = { INS_SAVE_CONSENT: 'consent', INS_SAVE_CANISTER_CALL: 'call',
                INS_SAVE_ROOT_KEY: 'root_key' }[ins]
        self._context[key] = payload
        return b''

    def _sign(self, path, blob):
        try:
            req = cbor_decode(blob)
            content = req['content']
            request_id = request_id_of(content)
        except (DecodeError, ValueError, KeyError, TypeError) as exc:
            if DEBUG:
                print(f"Cannot parse request: {exc}")
            raise AppError('bad request', SW_DATA_INVALID)

        pk = self.privkey(path)
        der = pk.sign(signing_digest(request_id), hasher=None)
        rs = serialize_compact(der_to_cdata(der))

        self.sign_count += 1
        if DEBUG:
            print(f"Signed {content.get('request_type')} request {B2A(request_id)}")

        if self.short_signature:
            # like old firmware: truncated, and no DER after it
            return request_id + rs[0:60]

        return request_id + rs + der

    def cmd_00(self, p1, p2, data):
        # get version
        return bytes([1 if self.test_mode else 0, *self.version, 1 if self.locked else 0]) \
                + struct.pack('>I', 0x33000004)

    def cmd_01(self, p1, p2, data):
        # get address and public key; p1=1 would show it on screen
        if len(data) != 20:
            raise AppError('bad path', SW_DATA_INVALID)

        pub = self.pubkey(data)
        der = SECP256K1_DER_PREFIX + pub
        pr = Principal.self_authenticating(der)
        if self.wrong_principal:
            pr = Principal.self_authenticating(der + b'x')

        txt = pr.to_text().replace('-', '')
        return pub + pr.raw + txt.encode('ascii')

    def cmd_07(self, p1, p2, data):
        # supported tokens: count, or one entry
        if p1 == 0:
            return bytes([len(self.tokens)])
        if p2 >= len(self.tokens):
            raise AppError('no such token', SW_DATA_INVALID)

        raw, symbol, decimals = self.tokens[p2]
        sym = symbol.encode('utf-8')
        return bytes([len(raw)]) + raw + bytes([len(sym)]) + sym + bytes([decimals])


class EmulatedConnection:
    # quacks like ledgercomm.Transport
    def __init__(self, app):
        self.app = app
        self.is_open = True

    def exchange(self, cla, ins, p1=0, p2=0, option=None, cdata=b''):
        if not self.is_open:
            raise ConnectionError('closed')
        return self.app.handle(cla, ins, p1, p2, bytes(cdata))

    def close(self):
        if self.is_open:
            self.is_open = False
            self.app.closed += 1


class InProcessProvider(TransportProvider):
    # reach the emulator without any sockets
    name = 'emulated'

    def __init__(self, app, supported=True):
        self.app = app
        self.supported = supported

    def is_supported(self):
        return self.supported

    def open(self):
        return LedgerTransport(self.app.connect(), name=self.name, is_emulator=True)


def recv_all(con, count):
    rv = b''
    while len(rv) < count:
        here = con.recv(count - len(rv))
        if not here:
            return None
        rv += here
    return rv

def serve(app, host, port):
    # APDU over TCP: 4-byte length + APDU in; 4-byte length + body + SW out
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    sock.listen()

    while 1:
        print(f"Waiting for new connection on: {host}:{port}")
        con, addr = sock.accept()
        app.opened += 1
        print(f"Connected.")

        while 1:
            hdr = recv_all(con, 4)
            if not hdr: break
            apdu = recv_all(con, struct.unpack('>I', hdr)[0])
            if apdu is None or len(apdu) < 4: break

            cla, ins, p1, p2 = apdu[0:4]
            data = apdu[5:] if len(apdu) > 4 else b''

            try:
                sw, resp = app.handle(cla, ins, p1, p2, data)
            except BaseException as exc:
                # shouldn't happen
                print(f"FAILED: ins=0x{ins:02x} => {exc}")
                traceback.print_exc()
                sw, resp = SW_EXECUTION_ERROR, b''

            if DEBUG:
                print(f"ins=0x{ins:02x} p1={p1} p2={p2} => 0x{sw:04x}")
                if resp:
                    hexdump(resp)

            con.sendall(struct.pack('>I', len(resp)) + resp + struct.pack('>H', sw))

        app.closed += 1
        con.close()


# Options we want for all commands
@click.group()
@click.option('--quiet', '-q', is_flag=True, help='Less debugging')
def main(quiet=False):
    global DEBUG
    DEBUG = not quiet

@main.command('emulate')
@click.option('--host', '-h', type=str, default='127.0.0.1', help='Address to listen on')
@click.option('--port', '-p', type=int, default=DEFAULT_PROXY_PORT, help='TCP port for APDUs')
@click.option('--seed', '-s', type=str, default=DEFAULT_SEED.decode(), help='Seed for (fake) keys')
@click.option('--app-version', '-v', type=str, default='2.4.9', help='Version to report', metavar="X.Y.Z")
@click.option('--locked', is_flag=True, help='Pretend device is locked')
def emulate_app(host, port, seed, app_version, locked=False):
    '''
        Emulate a device with the Internet Computer app open.

        Point clients at it with LEDGER_PROXY_ADDRESS=127.0.0.1
    '''
    app = ICPAppState(seed=seed.encode(), version=tuple(int(i) for i in app_version.split('.')))
    app.locked = locked

    print(app)
    serve(app, host, port)

@main.command('keys')
@click.option('--seed', '-s', type=str, default=DEFAULT_SEED.decode(), help='Seed for (fake) keys')
@click.option('--count', '-n', type=int, default=3, help='How many indexes to show')
def show_keys(seed, count):
    '''
        Show principals the emulator will report for the first few indexes.
    '''
    from icledger.utils import derivation_path, serialize_path

    app = ICPAppState(seed=seed.encode())
    for idx in range(count):
        path = derivation_path(idx)
        _, resp = app.handle(ICP_CLA, INS_GET_ADDR_SECP256K1, 0, 0, serialize_path(path))
        pr = Principal(resp[65:65+29])
        print(f"{path} => {pr}")

if __name__ == '__main__':
    main()

# EOF
