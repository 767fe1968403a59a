#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
import os, sys, time, pytest
from hashlib import sha256

# emulator isn't part of the package, but tests drive it in-process
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'emulator'))

from icpapp import ICPAppState, InProcessProvider
from icledger.constants import BLS_DER_PREFIX, CONSENT_METHOD
from icledger.icrc21 import encode_consent_response
from icledger.request import cbor_encode, cbor_decode, request_id_of
from icledger.utils import leb128_encode

def pytest_configure(config):
    config.addinivalue_line("markers", "device: needs a real Ledger with the ICP app open")

@pytest.fixture
def app():
    # fresh emulated device, per test
    return ICPAppState()

@pytest.fixture
def providers(app):
    return [ InProcessProvider(app) ]

@pytest.fixture
def ident(providers):
    from icledger.identity import LedgerIdentity
    return LedgerIdentity.create(providers=providers)

@pytest.fixture(scope='session')
def dev():
    # a real device on USB, or whatever LEDGER_PROXY_ADDRESS points at
    from icledger.identity import LedgerIdentity
    from icledger.exceptions import DeviceConnectionError

    try:
        return LedgerIdentity.create()
    except DeviceConnectionError as exc:
        raise pytest.skip(f'no device: {exc}')

#
# Certificates: real BLS is slow and needs real keys, so swap in a hash.
#
def fake_bls_sign(key, msg):
    return sha256(bytes(key) + msg).digest() + bytes(16)

def tree_of(d):
    # nested dict => hash tree (labels sorted, forks balanced enough)
    if not isinstance(d, dict):
        return [3, bytes(d)]

    nodes = [[2, (k.encode() if isinstance(k, str) else bytes(k)), tree_of(v)]
                    for k, v in sorted(d.items(), key=lambda kv:
                        kv[0].encode() if isinstance(kv[0], str) else bytes(kv[0]))]
    if not nodes:
        return [0]
    while len(nodes) > 1:
        nodes = [[1, nodes[i], nodes[i+1]] if i+1 < len(nodes) else nodes[i]
                        for i in range(0, len(nodes), 2)]
    return nodes[0]

class CertMaker:
    def __init__(self, seed=b'root'):
        self.raw_key = sha256(seed).digest() * 3
        self.root_key = BLS_DER_PREFIX + self.raw_key

    def sign(self, key, msg):
        return fake_bls_sign(key, msg)

    def make(self, contents, key=None, delegation=None, time_ns=None, signature=None):
        # contents: nested dict of state; 'time' added unless present
        from icledger.certificate import reconstruct
        from icledger.utils import domain_sep

        contents = dict(contents)
        if 'time' not in contents:
            contents['time'] = leb128_encode(time.time_ns() if time_ns is None else time_ns)

        tree = tree_of(contents)
        msg = domain_sep('ic-state-root') + reconstruct(tree)

        if signature is None:
            signature = self.sign(key or self.raw_key, msg)

        rv = dict(tree=tree, signature=signature)
        if delegation:
            rv['delegation'] = delegation
        return cbor_encode(rv)

    def request_status(self, request_id, status='replied', reply=None, **kws):
        here = { 'status': status.encode() }
        if reply is not None:
            here['reply'] = reply
        for fld in ('reject_code', 'reject_message', 'error_code'):
            if fld in kws:
                v = kws.pop(fld)
                here[fld] = leb128_encode(v) if isinstance(v, int) else (v.encode() if isinstance(v, str) else v)
        return self.make({ 'request_status': { request_id: here } }, **kws)

class BlsCertMaker(CertMaker):
    # genuine BLS12-381 (sig in G1, key in G2), slow
    def __init__(self, secret=0x1234567):
        from py_ecc.bls.g2_primitives import G2_to_signature
        from py_ecc.optimized_bls12_381 import G2, multiply

        self.secret = secret
        self.raw_key = G2_to_signature(multiply(G2, secret))
        self.root_key = BLS_DER_PREFIX + self.raw_key

    def sign(self, key, msg):
        from py_ecc.bls.g2_primitives import G1_to_pubkey
        from py_ecc.bls.hash_to_curve import hash_to_G1
        from py_ecc.optimized_bls12_381 import multiply
        from icledger.certificate import BLS_DST

        return G1_to_pubkey(multiply(hash_to_G1(msg, BLS_DST, sha256), self.secret))

@pytest.fixture
def certs(monkeypatch):
    import icledger.certificate

    monkeypatch.setattr(icledger.certificate, 'bls_verify',
                            lambda pk, sig, msg: sig == fake_bls_sign(pk, msg))
    return CertMaker()

#
# A pretend replica, enough for the consent flow
#
def consent_reply(intent='Send tokens', fields=None):
    if fields is None:
        fields = [
            ('From', {'Text': {'content': 'my-account'}}),
            ('Amount', {'TokenAmount': {'amount': 150_000_000, 'decimals': 8, 'symbol': 'ICP'}}),
        ]
    return encode_consent_response({'Ok': {
                'metadata': {'language': 'en', 'utc_offset_minutes': None},
                'consent_message': {'FieldsDisplayMessage': {'intent': intent, 'fields': fields}},
            }})

class FakeResponse:
    def __init__(self, status_code, content=b''):
        self.status_code = status_code
        self.content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f'{self.status_code}', response=self)

class FakeReplica:
    # quacks like requests.Session
    #  mode: sync | async | reject | sync_reject | never | garbage
    def __init__(self, certs, mode='sync', reply=None, pending_polls=2):
        self.certs = certs
        self.mode = mode
        self.reply = reply
        self.pending_polls = pending_polls
        self.posts = []
        self.calls = []
        self.read_states = 0
        self.status_fetches = 0

    def get(self, url, **kws):
        assert url.endswith('/api/v2/status')
        self.status_fetches += 1
        return FakeResponse(200, cbor_encode({'root_key': self.certs.root_key}))

    def _reply_for(self, content):
        if self.reply is not None:
            return self.reply
        if content['method_name'] == CONSENT_METHOD:
            return consent_reply()
        return b'DIDL\x00\x00'

    def _status(self, rid):
        if self.mode == 'reject':
            return self.certs.request_status(rid, 'rejected', reject_code=4,
                                        reject_message='no consent for you', error_code='IC0503')
        return self.certs.request_status(rid, 'replied', reply=self._reply_for(self.calls[-1]))

    def post(self, url, data=None, headers=None, **kws):
        body = cbor_decode(data)
        self.posts.append((url, body))
        kind = url.rsplit('/', 1)[1]

        if kind == 'call':
            content = body['content']
            self.calls.append(content)
            rid = request_id_of(content)
            self.last_request_id = rid

            if self.mode == 'garbage':
                return FakeResponse(200, b'\xff\xff')
            if self.mode in ('sync', 'reject'):
                return FakeResponse(200, cbor_encode({'status': 'replied',
                                                      'certificate': self._status(rid)}))
            if self.mode == 'sync_reject':
                return FakeResponse(200, cbor_encode({'status': 'non_replicated_rejection',
                                    'reject_code': 3, 'reject_message': 'no such method',
                                    'error_code': 'IC0536'}))
            return FakeResponse(202)

        assert kind == 'read_state'
        self.read_states += 1
        rid = self.last_request_id

        if self.mode == 'garbage':
            return FakeResponse(200, b'\xd9\xd9\xf7\xa2')
        if self.mode == 'never' or self.read_states <= self.pending_polls:
            cert = self.certs.request_status(rid, 'processing')
        else:
            cert = self._status(rid)

        return FakeResponse(200, cbor_encode({'certificate': cert}))

@pytest.fixture
def replica(certs):
    return FakeReplica(certs)

@pytest.fixture
def verifier(replica, certs):
    from icledger.agent import HttpAgent, RetryPolicy
    from icledger.consent import ConsentVerifier

    agent = HttpAgent(host='http://127.0.0.1:4943', root_key=certs.root_key, session=replica)
    return ConsentVerifier(agent, policy=RetryPolicy(initial_delay=0, max_attempts=5))

# EOF
