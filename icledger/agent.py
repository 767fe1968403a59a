#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Minimal HTTP agent for the Internet Computer.
#
# - just what the consent flow needs: calls, read_state (polling) and the
#   status endpoint (root key for test networks)
# - uses 'requests' module
#
import time, logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from .certificate import Certificate, lookup_request_status
from .constants import DEFAULT_NETWORK, IC_ROOT_KEY, MAINNET_HOSTS, CALL_EXPIRY_MS
from .exceptions import CallRejectedError, DecodeError, PollingTimeoutError
from .identity import AnonymousIdentity
from .principal import as_principal
from .request import (HttpAgentRequest, cbor_encode, cbor_decode, call_content,
                        read_state_content, request_id_of, make_expiry)

logger = logging.getLogger(__name__)

CBOR_HEADERS = { 'Content-Type': 'application/cbor' }

@dataclass(frozen=True)
class RetryPolicy:
    # capped exponential backoff, bounded both by count and by wall time
    initial_delay: float = 0.5
    backoff: float = 1.5
    max_delay: float = 5.0
    max_attempts: int = 30
    timeout: float = 300.0

    def delays(self):
        delay = self.initial_delay
        for _ in range(self.max_attempts):
            yield delay
            delay = min(delay * self.backoff, self.max_delay)

@dataclass(frozen=True)
class SubmitResponse:
    request_id: bytes
    request_details: Dict[str, Any]     # content of the call, as sent
    status_code: int
    body: Optional[Dict[str, Any]]      # decoded CBOR body, if any

    @property
    def certificate(self):
        # raw certificate bytes from synchronous (v3) call, if we got one
        if self.body and self.body.get('certificate'):
            return bytes(self.body['certificate'])
        return None


def final_reply(st):
    # reply bytes if request reached a terminal state; None while still pending
    if st.status == 'replied':
        if st.reply is None:
            raise DecodeError("Certificate says replied, but has no reply")
        return st.reply

    if st.status == 'rejected':
        raise CallRejectedError(st.reject_message, reject_code=st.reject_code,
                                    error_code=st.error_code)

    if st.status == 'done':
        raise DecodeError("Call was marked as done but we never saw the reply")

    # unknown, received, processing
    return None


class HttpAgent:

    def __init__(self, host=None, identity=None, root_key=None, session=None):
        import requests
        self.host = (host or DEFAULT_NETWORK).rstrip('/')
        self.identity = identity or AnonymousIdentity()
        self.root_key = root_key or IC_ROOT_KEY
        self.ses = session or requests.Session()

    @classmethod
    def create(cls, host=None, identity=None, fetch_root_key=None, **kws):
        # Only fetch the root key if the network isn't mainnet.
        rv = cls(host=host, identity=identity, **kws)
        if fetch_root_key is None:
            fetch_root_key = not rv.is_mainnet
        if fetch_root_key:
            rv.fetch_root_key()
        return rv

    def __repr__(self):
        return '<%s %s>' % (self.__class__.__name__, self.host)

    @property
    def is_mainnet(self):
        hn = urlparse(self.host).hostname or ''
        return any(hn == h or hn.endswith('.' + h) for h in MAINNET_HOSTS)

    @property
    def uses_mainnet_root_key(self):
        return self.root_key == IC_ROOT_KEY

    def fetch_root_key(self):
        # trust-on-first-use for local/test networks; never do this on mainnet
        r = self.ses.get(self.host + '/api/v2/status')
        r.raise_for_status()
        try:
            self.root_key = bytes(cbor_decode(r.content)['root_key'])
        except (DecodeError, ValueError, KeyError, TypeError) as exc:
            raise DecodeError(f"Bad status response: {exc}")

        return self.root_key

    def _post(self, kind, canister_id, body, version='v2'):
        url = f'{self.host}/api/{version}/canister/{canister_id.to_text()}/{kind}'
        r = self.ses.post(url, data=cbor_encode(body), headers=CBOR_HEADERS)
        r.raise_for_status()
        return r

    def call(self, canister_id, method_name, arg, expiry_ms=CALL_EXPIRY_MS) -> SubmitResponse:
        # update call, synchronous (v3) endpoint; may still come back 202
        cid = as_principal(canister_id)
        content = call_content(cid, method_name, arg, self.identity.get_principal(),
                                    make_expiry(expiry_ms))

        req = self.identity.transform_request(HttpAgentRequest(endpoint='call', body=content))

        # identity may have touched the content (expiry), so hash what's sent
        sent = req.body['content']
        request_id = request_id_of(sent)

        r = self._post('call', cid, req.body, version='v3')

        body = None
        if r.status_code == 200 and r.content:
            try:
                body = cbor_decode(r.content)
            except DecodeError as exc:
                raise DecodeError(f"Bad CBOR in call response: {exc}")

        return SubmitResponse(request_id=request_id, request_details=sent,
                                status_code=r.status_code, body=body)

    def read_state(self, canister_id, paths, expiry_ms=CALL_EXPIRY_MS) -> bytes:
        # returns raw certificate bytes (not yet verified)
        cid = as_principal(canister_id)
        content = read_state_content(paths, self.identity.get_principal(), make_expiry(expiry_ms))
        req = self.identity.transform_request(HttpAgentRequest(endpoint='read_state', body=content))

        r = self._post('read_state', cid, req.body)
        try:
            return bytes(cbor_decode(r.content)['certificate'])
        except (DecodeError, ValueError, KeyError, TypeError) as exc:
            raise DecodeError(f"Bad read_state response: {exc}")

    def poll_for_response(self, canister_id, request_id, policy=None):
        # Wait for request to reach a terminal state; returns (reply, raw_certificate)
        # - bounded: gives up with PollingTimeoutError
        policy = policy or RetryPolicy()
        started = time.monotonic()
        attempts = 0

        for delay in policy.delays():
            attempts += 1
            raw = self.read_state(canister_id, [[b'request_status', request_id]])
            cert = Certificate.create(raw, self.root_key, canister_id)
            st = lookup_request_status(cert, request_id)

            reply = final_reply(st)
            if reply is not None:
                return reply, raw

            elapsed = time.monotonic() - started
            if attempts >= policy.max_attempts or elapsed + delay > policy.timeout:
                break

            logger.debug("Request %s is %s; retry in %.1fs", request_id.hex(), st.status, delay)
            time.sleep(delay)

        raise PollingTimeoutError(attempts, time.monotonic() - started)

# EOF
