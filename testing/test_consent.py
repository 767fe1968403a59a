#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Consent flow and the HTTP agent, against a pretend replica (see conftest).
#
import pytest
from icledger.agent import HttpAgent, RetryPolicy, SubmitResponse
from icledger.consent import ConsentVerifier
from icledger.constants import CONSENT_METHOD, IC_ROOT_KEY
from icledger.exceptions import *
from icledger.icrc21 import FieldsDisplayMessage, TokenAmount, encode_consent_response
from icledger.identity import AnonymousIdentity
from icledger.request import cbor_decode
from icledger import candid, icrc21

CANISTER = 'ryjl3-tyaaa-aaaaa-aaaba-cai'

def test_retry_policy():
    p = RetryPolicy(initial_delay=1, backoff=2, max_delay=5, max_attempts=6)
    assert list(p.delays()) == [1, 2, 4, 5, 5, 5]

def test_mainnet_detect():
    assert HttpAgent('https://icp-api.io').is_mainnet
    assert HttpAgent('https://ic0.app/').is_mainnet
    assert HttpAgent('https://xyz.icp0.io').is_mainnet
    assert not HttpAgent('http://127.0.0.1:4943').is_mainnet
    assert not HttpAgent('https://icp0.io.evil.com').is_mainnet

    a = HttpAgent()
    assert a.uses_mainnet_root_key
    assert a.root_key == IC_ROOT_KEY

def test_root_key_fetch(replica, certs):
    a = HttpAgent.create('http://127.0.0.1:4943', session=replica)
    assert replica.status_fetches == 1
    assert a.root_key == certs.root_key
    assert not a.uses_mainnet_root_key

    # never on mainnet, unless asked
    a = HttpAgent.create('https://icp-api.io', session=replica)
    assert replica.status_fetches == 1
    assert a.root_key == IC_ROOT_KEY

def test_consent_sync(verifier, replica):
    art = verifier.obtain_consent(CANISTER, 'transfer', b'DIDL\x00\x00')

    assert len(replica.calls) == 1
    assert replica.read_states == 0

    sent = replica.calls[0]
    assert sent['method_name'] == CONSENT_METHOD
    assert sent['sender'] == b'\x04'

    # what we asked for
    args, = candid.decode(sent['arg'], icrc21.LABELS)
    assert args['method'] == 'transfer'
    assert args['arg'] == b'DIDL\x00\x00'
    assert args == art.args

    msg = art.message
    assert isinstance(msg, FieldsDisplayMessage)
    assert msg.intent == 'Send tokens'
    assert msg.fields[1] == ('Amount', TokenAmount(150_000_000, 8, 'ICP'))

    # artifacts for device
    assert cbor_decode(bytes.fromhex(art.consent_request_hex)) == {'content': sent}
    assert bytes.fromhex(art.certificate_hex) == art.certificate
    assert verifier.root_key_hex_for_device() == verifier.root_key.hex()

def test_consent_polling(verifier, replica):
    replica.mode = 'async'
    art = verifier.obtain_consent(CANISTER, 'transfer', b'DIDL\x00\x00')

    assert replica.read_states == 3
    assert art.message.intent == 'Send tokens'

    # read_state asks for exactly our request
    url, body = replica.posts[-1]
    assert url.endswith('/api/v2/canister/%s/read_state' % CANISTER)
    assert [list(p) for p in body['content']['paths']] == [[b'request_status', replica.last_request_id]]

def test_consent_timeout(verifier, replica):
    replica.mode = 'never'
    with pytest.raises(PollingTimeoutError) as ee:
        verifier.obtain_consent(CANISTER, 'transfer', b'')
    assert ee.value.attempts == 5
    assert replica.read_states == 5

def test_consent_rejected(verifier, replica):
    replica.mode = 'reject'
    with pytest.raises(CallRejectedError) as ee:
        verifier.obtain_consent(CANISTER, 'transfer', b'')
    assert ee.value.reject_code == 4
    assert ee.value.error_code == 'IC0503'
    assert 'no consent for you' in str(ee.value)

    replica.mode = 'sync_reject'
    with pytest.raises(CallRejectedError) as ee:
        verifier.obtain_consent(CANISTER, 'transfer', b'')
    assert ee.value.reject_code == 3

def test_consent_err_reply(verifier, replica):
    replica.reply = encode_consent_response({'Err': {
                        'ConsentMessageUnavailable': {'description': 'try later'}}})
    with pytest.raises(CallRejectedError) as ee:
        verifier.obtain_consent(CANISTER, 'transfer', b'')
    assert ee.value.error_code == 'ConsentMessageUnavailable'

def test_consent_garbage_reply(verifier, replica):
    replica.reply = b'not candid'
    with pytest.raises(DecodeError):
        verifier.obtain_consent(CANISTER, 'transfer', b'')

def test_consent_garbage_cbor(verifier, replica):
    # replica answers with bytes that are not CBOR at all
    replica.mode = 'garbage'
    with pytest.raises(DecodeError):
        verifier.obtain_consent(CANISTER, 'transfer', b'')

    with pytest.raises(DecodeError):
        verifier.agent.read_state(CANISTER, [[b'time']])

def test_consent_bad_certificate(verifier, replica, certs, monkeypatch):
    # signature check fails: never get to decoding
    import icledger.certificate
    monkeypatch.setattr(icledger.certificate, 'bls_verify', lambda pk, sig, msg: False)

    decoded = []
    monkeypatch.setattr(verifier, 'decode_consent_message', lambda r: decoded.append(r))

    with pytest.raises(CertificateVerificationError):
        verifier.obtain_consent(CANISTER, 'transfer', b'')
    assert not decoded

def test_consent_needs_anonymous(ident):
    with pytest.raises(ValueError):
        ConsentVerifier(HttpAgent(identity=ident))

def test_mainnet_root_key_not_sent():
    cv = ConsentVerifier(HttpAgent('https://icp-api.io'))
    assert cv.root_key_hex_for_device() is None

def test_done_without_reply(verifier, replica, certs):
    # certificate says "done": reply is gone, can't use it
    rid = bytes(32)
    sub = SubmitResponse(request_id=rid, request_details={}, status_code=200,
                            body={'certificate': certs.request_status(rid, 'done')})
    with pytest.raises(DecodeError):
        verifier.verify_certificate(sub, CANISTER)

def test_agent_call_signed(ident, replica, certs, app):
    # ledger identity as the agent's identity: envelope carries key and signature
    from icledger.keys import Secp256k1PublicKey
    from icledger.request import request_id_of, signing_digest

    agent = HttpAgent('http://127.0.0.1:4943', identity=ident, root_key=certs.root_key,
                            session=replica)
    sub = agent.call(CANISTER, 'transfer', b'DIDL\x00\x00')

    url, body = replica.posts[-1]
    assert url.endswith('/api/v3/canister/%s/call' % CANISTER)

    content = body['content']
    assert content['sender'] == ident.get_principal().raw
    assert body['sender_pubkey'] == ident.get_public_key()
    assert sub.request_id == request_id_of(content)

    pub = Secp256k1PublicKey.from_der(body['sender_pubkey'])
    assert pub.verify(body['sender_sig'], signing_digest(sub.request_id))
    assert app.sign_count == 1

def test_agent_anonymous_envelope(replica, certs):
    agent = HttpAgent('http://127.0.0.1:4943', root_key=certs.root_key, session=replica)
    assert isinstance(agent.identity, AnonymousIdentity)
    agent.call(CANISTER, 'foo', b'DIDL\x00\x00')

    _, body = replica.posts[-1]
    assert set(body) == {'content'}

# EOF
