#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Picking a transport, and keeping the device released.
#
import pytest
import icledger.transport as tt
from icledger.constants import *
from icledger.exceptions import *
from icledger.proto import LedgerICPApp, session, check_return_code
from icledger.transport import connect, close, LedgerTransport, EmulatorProvider, TransportProvider
from icpapp import InProcessProvider

class Refuses(TransportProvider):
    name = 'refuses'
    def __init__(self, supported, exc=None):
        self.supported = supported
        self.exc = exc
        self.opened = 0

    def is_supported(self):
        return self.supported

    def open(self):
        self.opened += 1
        raise self.exc

def test_first_supported_wins(app):
    skip = Refuses(False)
    tr = connect([skip, InProcessProvider(app), Refuses(True, NoDeviceFound())])
    assert tr.is_open
    assert skip.opened == 0
    assert app.opened == 1
    close(tr)
    assert app.closed == 1

def test_nothing_supported():
    with pytest.raises(UnsupportedEnvironment):
        connect([Refuses(False), Refuses(False)])
    with pytest.raises(UnsupportedEnvironment):
        connect([])

def test_no_fallthrough(app):
    # first capable provider decides, even when it fails
    first = Refuses(True, DeviceBusyError())
    with pytest.raises(DeviceBusyError):
        connect([first, InProcessProvider(app)])
    assert first.opened == 1
    assert app.opened == 0

def test_close_idempotent(app):
    tr = connect([InProcessProvider(app)])
    close(tr)
    close(tr)
    close(None)
    assert app.closed == 1
    assert not tr.is_open

    with pytest.raises(RuntimeError):
        tr.exchange(INS_GET_VERSION)

def test_emulator_provider_env(monkeypatch):
    monkeypatch.delenv('LEDGER_PROXY_ADDRESS', raising=False)
    monkeypatch.delenv('LEDGER_PROXY_PORT', raising=False)

    p = EmulatorProvider()
    assert not p.is_supported()
    assert p.port == DEFAULT_PROXY_PORT

    monkeypatch.setenv('LEDGER_PROXY_ADDRESS', '127.0.0.1')
    monkeypatch.setenv('LEDGER_PROXY_PORT', '40000')
    assert p.is_supported()
    assert p.host == '127.0.0.1'
    assert p.port == 40000

    assert EmulatorProvider(host='example', port=1).port == 1

def test_default_providers_order():
    assert [p.name for p in tt.DEFAULT_PROVIDERS] == ['tcp', 'hid']

def test_session_always_closes(app, providers):
    with pytest.raises(ZeroDivisionError):
        with session(DEFAULT_DERIVE_PATH, providers=providers) as dev:
            dev.get_version()
            1/0
    assert app.open_sessions == 0

def test_verbose(app, capsys, monkeypatch):
    monkeypatch.setattr(tt, 'VERBOSE', True)
    tr = connect([InProcessProvider(app)])
    sw, resp = tr.exchange(INS_GET_VERSION)
    assert sw == SW_OKAY
    close(tr)

    out = capsys.readouterr().out
    assert '>> ins=0x00' in out
    assert '<< 0x9000' in out

def test_app_chunking(app, providers):
    # payloads bigger than one APDU
    from icledger.request import prepare_cbor_for_ledger, call_content, request_id_of
    from icledger.principal import Principal

    body = call_content(b'\x01', 'big', bytes(1000), Principal.anonymous(), 1)
    with session(DEFAULT_DERIVE_PATH, providers=providers) as dev:
        resp = dev.sign(DEFAULT_DERIVE_PATH, prepare_cbor_for_ledger(body))

    assert resp.pre_sign_hash == request_id_of(body)
    assert len(resp.signature_rs) == SIGNATURE_LENGTH
    assert resp.signature_der[0] == 0x30

def test_app_rejects_bad_cbor(app, providers):
    with session(DEFAULT_DERIVE_PATH, providers=providers) as dev:
        with pytest.raises(DeviceProtocolError) as ee:
            dev.sign(DEFAULT_DERIVE_PATH, b'\xd9\xd9\xf7\xa2')
    assert ee.value.code == SW_DATA_INVALID
    assert app.sign_count == 0

def test_return_codes():
    check_return_code(SW_OKAY, b'', 'x')

    with pytest.raises(DeviceProtocolError) as ee:
        check_return_code(0x6123, b'custom text', 'sign')
    assert ee.value.code == 0x6123
    assert ee.value.raw_msg == 'custom text'
    assert 'sign' in str(ee.value)

    with pytest.raises(DeviceProtocolError) as ee:
        check_return_code(SW_WRONG_LENGTH, b'', 'sign')
    assert ee.value.raw_msg == 'Wrong length'

def test_short_responses():
    class Short:
        def exchange(self, **kws):
            return SW_OKAY, b'\x00\x01'
        def close(self):
            pass

    dev = LedgerICPApp(LedgerTransport(Short()))
    with pytest.raises(DeviceProtocolError):
        dev.get_address_and_pubkey(DEFAULT_DERIVE_PATH)
    with pytest.raises(DeviceProtocolError):
        dev.get_version()

def test_unplugged_mid_session():
    class Yanked:
        def exchange(self, **kws):
            raise OSError("read error")
        def close(self):
            pass

    dev = LedgerICPApp(LedgerTransport(Yanked()))
    with pytest.raises(NoDeviceFound):
        dev.get_version()

# EOF
