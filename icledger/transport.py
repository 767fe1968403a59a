# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# transport.py
#
# Find and open a connection to the Ledger device, either real (USB HID) or
# an emulator listening for APDUs on a TCP port (Speculos, or emulator/icpapp.py).
#
import os, socket, logging
from binascii import b2a_hex
from .constants import *
from .exceptions import NoDeviceFound, UnsupportedEnvironment, DeviceBusyError

logger = logging.getLogger(__name__)

# Change this to see traffic details
VERBOSE = False

class LedgerTransport:
    #
    # One open connection to the device. Wraps a ledgercomm.Transport (or
    # anything else with the same exchange/close methods).
    #
    def __init__(self, dev, name='hid', is_emulator=False):
        self._dev = dev
        self.name = name
        self.is_emulator = is_emulator

    def __repr__(self):
        state = 'closed' if self._dev is None else 'open'
        return '<%s %s (%s)>' % (self.__class__.__name__, self.name, state)

    @property
    def is_open(self):
        return self._dev is not None

    def exchange(self, ins, p1=0, p2=0, data=b''):
        # Send one APDU to the ICP app, return (status_word, response_body)
        if self._dev is None:
            raise RuntimeError("transport already closed")

        if VERBOSE:
            print(f">> ins=0x{ins:02x} p1={p1} p2={p2} ({len(data)} bytes) "
                  + b2a_hex(data[0:32]).decode('ascii'))

        try:
            sw, resp = self._dev.exchange(cla=ICP_CLA, ins=ins, p1=p1, p2=p2, cdata=bytes(data))
        except OSError as exc:
            # unplugged, or emulator went away, mid-session
            raise NoDeviceFound(f"Lost contact with Ledger device: {exc}")
        resp = bytes(resp)

        if VERBOSE:
            print(f"<< 0x{sw:04x} ({len(resp)} bytes) " + b2a_hex(resp[0:32]).decode('ascii'))

        return sw, resp

    def close(self):
        # release resources; safe to call more than once
        if self._dev is None:
            return
        dev, self._dev = self._dev, None
        dev.close()


class TransportProvider:
    #
    # Abstract: one way of reaching a device. Probe first, then open.
    #
    name = '?'

    def is_supported(self):
        # can this environment use this kind of transport at all?
        raise NotImplementedError

    def open(self):
        # return a LedgerTransport, or raise NoDeviceFound/DeviceBusyError
        raise NotImplementedError


class EmulatorProvider(TransportProvider):
    #
    # APDUs over TCP. Enabled by LEDGER_PROXY_ADDRESS (and _PORT) environment
    # variables, same as other Ledger tools, or by explicit host.
    #
    name = 'tcp'

    def __init__(self, host=None, port=None):
        self._host = host
        self._port = port

    # environment is read late, so DEFAULT_PROVIDERS follows later changes
    @property
    def host(self):
        return self._host or os.environ.get('LEDGER_PROXY_ADDRESS')

    @property
    def port(self):
        return int(self._port or os.environ.get('LEDGER_PROXY_PORT') or DEFAULT_PROXY_PORT)

    def is_supported(self):
        return bool(self.host)

    def open(self):
        from ledgercomm import Transport

        try:
            dev = Transport(interface='tcp', server=self.host, port=self.port)
        except (ConnectionError, socket.error) as exc:
            raise NoDeviceFound(f"No emulator listening at {self.host}:{self.port} ({exc})")

        return LedgerTransport(dev, name=f'tcp:{self.host}:{self.port}', is_emulator=True)


class HidProvider(TransportProvider):
    #
    # Real device on USB.
    #
    name = 'hid'

    def is_supported(self):
        try:
            import hid
        except ImportError:
            return False
        return True

    def open(self):
        import hid
        from ledgercomm import Transport

        if not hid.enumerate(LEDGER_VENDOR_ID, 0):
            raise NoDeviceFound()

        try:
            dev = Transport(interface='hid')
        except Exception as exc:
            # device is there (we enumerated it) but someone else has it open
            raise DeviceBusyError() from exc

        return LedgerTransport(dev, name='hid')


# emulator first (if configured), then USB
DEFAULT_PROVIDERS = [ EmulatorProvider(), HidProvider() ]

def connect(providers=None):
    # Pick the first provider that can work here, and open it.
    # - no retries, caller decides what to do
    for prov in (DEFAULT_PROVIDERS if providers is None else providers):
        if not prov.is_supported():
            continue

        logger.debug("Connecting using %s transport", prov.name)
        return prov.open()

    raise UnsupportedEnvironment()

def close(transport):
    # idempotent
    if transport is not None:
        transport.close()

# EOF
