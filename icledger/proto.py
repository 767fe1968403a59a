#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# proto.py
#
# Talk to the Internet Computer app on the Ledger device, one bracketed
# session at a time.
#
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, List
from .constants import *
from .exceptions import (DeviceProtocolError, StaleFirmwareError, UserRejectedError,
                            WrongAppError, DeviceLockedError, DeviceSubstitutionError)
from .principal import Principal
from .transport import connect, close
from .utils import serialize_path, force_bytes, B2A

@dataclass(frozen=True)
class AddressInfo:
    public_key: bytes           # 65 bytes, uncompressed
    principal: bytes            # raw principal bytes, as computed by device
    principal_text: str         # textual form, as displayed by device

@dataclass(frozen=True)
class DeviceVersion:
    major: int
    minor: int
    patch: int
    test_mode: bool = False
    device_locked: bool = False
    target_id: int = 0

    def __str__(self):
        return f'{self.major}.{self.minor}.{self.patch}'

@dataclass(frozen=True)
class SignResponse:
    signature_rs: bytes         # should be 64 bytes, caller checks
    pre_sign_hash: bytes = b''
    signature_der: bytes = b''

@dataclass(frozen=True)
class TokenInfo:
    canister_id: str
    symbol: str
    decimals: int

def check_return_code(sw, resp, cmd):
    # Map status word into our exceptions. Does nothing when okay.
    if sw == SW_OKAY:
        return

    if sw in (SW_APP_NOT_OPEN, SW_CLA_NOT_SUPPORTED, SW_WRONG_APP):
        raise WrongAppError()
    if sw == SW_DEVICE_LOCKED:
        raise DeviceLockedError()

    msg = SW_MESSAGES.get(sw)
    if not msg:
        # app sometimes puts an ascii explanation in the body
        msg = resp.decode('ascii', 'replace') if resp else 'Unknown return code'

    text = f'0x{sw:04x} on {cmd}: {msg}'
    if sw == SW_INS_NOT_SUPPORTED:
        raise StaleFirmwareError(text + " (update the Internet Computer app)", sw, msg)
    if sw == SW_COMMAND_NOT_ALLOWED:
        raise UserRejectedError(text, sw, msg)

    raise DeviceProtocolError(text, sw, msg)


class LedgerICPApp:
    #
    # Protocol wrapper for the app. Call methods on this instance to get work done.
    #
    def __init__(self, transport):
        self.tr = transport

    def __repr__(self):
        return '<%s via %r>' % (self.__class__.__name__, self.tr)

    def send(self, cmd, ins, p1=0, p2=0, data=b''):
        # Send a single APDU, raise on any error, return body
        sw, resp = self.tr.exchange(ins, p1=p1, p2=p2, data=data)
        check_return_code(sw, resp, cmd)
        return resp

    def send_chunks(self, cmd, ins, path, payload, p2=0):
        # first chunk is the derivation path, then payload in CHUNK_SIZE pieces
        chunks = [serialize_path(path)]
        chunks += [payload[i:i+CHUNK_SIZE] for i in range(0, len(payload), CHUNK_SIZE)]

        resp = b''
        for n, chunk in enumerate(chunks):
            if n == 0:
                p1 = PAYLOAD_INIT
            elif n == len(chunks) - 1:
                p1 = PAYLOAD_LAST
            else:
                p1 = PAYLOAD_ADD
            resp = self.send(cmd, ins, p1=p1, p2=p2, data=chunk)

        return resp

    def get_address_and_pubkey(self, path, show=False) -> AddressInfo:
        # public key for path, plus principal as device computes it
        p1 = P1_SHOW_ADDRESS if show else P1_ONLY_RETRIEVE
        resp = self.send('get_address', INS_GET_ADDR_SECP256K1, p1=p1, data=serialize_path(path))

        pk_end = SECP256K1_PUBKEY_LENGTH
        pr_end = pk_end + PRINCIPAL_RAW_LENGTH
        if len(resp) < pr_end:
            raise DeviceProtocolError(f'Short response on get_address ({len(resp)} bytes)',
                                        SW_WRONG_LENGTH, 'short response')

        # device gives text w/o dashes; put them back
        txt = resp[pr_end:].decode('ascii', 'replace')
        txt = '-'.join(txt[pos:pos+5] for pos in range(0, len(txt), 5))

        return AddressInfo(public_key=resp[0:pk_end], principal=resp[pk_end:pr_end],
                            principal_text=txt)

    def show_address_and_pubkey(self, path) -> AddressInfo:
        # same, but operator sees it on device screen (and must confirm)
        return self.get_address_and_pubkey(path, show=True)

    def get_version(self) -> DeviceVersion:
        resp = self.send('get_version', INS_GET_VERSION)
        if len(resp) < 4:
            raise DeviceProtocolError(f'Short response on get_version ({len(resp)} bytes)',
                                        SW_WRONG_LENGTH, 'short response')

        target_id = int.from_bytes(resp[5:9], 'big') if len(resp) >= 9 else 0

        return DeviceVersion(test_mode=bool(resp[0]), major=resp[1], minor=resp[2],
                                patch=resp[3], device_locked=(len(resp) > 4 and resp[4] == 1),
                                target_id=target_id)

    def _parse_signature(self, resp):
        # pre-sign hash (32) + r||s (64) + DER signature
        return SignResponse(pre_sign_hash=resp[0:PRE_SIGN_HASH_LENGTH],
                            signature_rs=resp[PRE_SIGN_HASH_LENGTH:PRE_SIGN_HASH_LENGTH+SIGNATURE_LENGTH],
                            signature_der=resp[PRE_SIGN_HASH_LENGTH+SIGNATURE_LENGTH:])

    def sign(self, path, blob: bytes, special_flag: int = 0) -> SignResponse:
        # sign CBOR-encoded request; operator must approve on device
        resp = self.send_chunks('sign', INS_SIGN_SECP256K1, path, bytes(blob), p2=special_flag)
        return self._parse_signature(resp)

    def sign_with_context(self, path, consent_request_hex, call_hex, certificate_hex,
                                root_key_hex: Optional[str] = None) -> SignResponse:
        # Signature bound to the (certified) consent message the operator is shown.
        # - each artifact is loaded separately; the last step shows and signs
        self.send_chunks('save_consent', INS_SAVE_CONSENT, path, force_bytes(consent_request_hex))
        self.send_chunks('save_call', INS_SAVE_CANISTER_CALL, path, force_bytes(call_hex))

        if root_key_hex:
            # only needed off-mainnet; device knows the real one
            self.send_chunks('save_root_key', INS_SAVE_ROOT_KEY, path, force_bytes(root_key_hex))

        resp = self.send_chunks('sign_with_context', INS_SIGN_WITH_CONTEXT, path,
                                    force_bytes(certificate_hex))
        return self._parse_signature(resp)

    def get_supported_tokens(self) -> List[TokenInfo]:
        # tokens the app knows how to display
        count = self.send('get_tokens', INS_GET_TOKENS, p1=0)
        if len(count) != 1:
            raise DeviceProtocolError('Bad token count', SW_WRONG_LENGTH, 'bad length')

        rv = []
        for idx in range(count[0]):
            resp = self.send('get_tokens', INS_GET_TOKENS, p1=1, p2=idx)
            try:
                ln = resp[0]
                cid = Principal(resp[1:1+ln])
                pos = 1 + ln
                sl = resp[pos]
                symbol = resp[pos+1:pos+1+sl].decode('utf-8')
                decimals = resp[pos+1+sl]
            except (IndexError, UnicodeDecodeError, ValueError):
                raise DeviceProtocolError(f'Bad token entry #{idx}: {B2A(resp)}',
                                            SW_DATA_INVALID, 'bad token entry')

            rv.append(TokenInfo(canister_id=cid.to_text(), symbol=symbol, decimals=decimals))

        return rv

@contextmanager
def session(path, expected_public_key=None, providers=None):
    # Open device, check it's the one we expect, yield app; always close after.
    tr = connect(providers)
    try:
        app = LedgerICPApp(tr)

        if expected_public_key is not None:
            info = app.get_address_and_pubkey(path)
            if info.public_key != expected_public_key.to_raw():
                raise DeviceSubstitutionError()

        yield app
    finally:
        close(tr)

def execute(path, fn, expected_public_key=None, providers=None):
    # run fn(app) inside a device session, return its result
    with session(path, expected_public_key=expected_public_key, providers=providers) as app:
        return fn(app)

# EOF
