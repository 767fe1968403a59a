#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Requests as sent to the IC: content maps, their ids, and signed envelopes.
#
# - the device re-computes the request id from CBOR we give it, so the CBOR
#   we show it must be exactly what the network gets
#
import time, cbor2
from dataclasses import dataclass, field, replace
from hashlib import sha256
from typing import Any, Dict, Optional
from .constants import CBOR_SELF_DESCRIBE_TAG
from .exceptions import DecodeError
from .principal import Principal, as_principal
from .utils import leb128_encode, domain_sep

REQUEST_TYPE_CALL = 'call'
REQUEST_TYPE_READ_STATE = 'read_state'
REQUEST_TYPE_QUERY = 'query'

@dataclass
class HttpAgentRequest:
    # what an agent wants to send: endpoint + body (+ http details)
    endpoint: str
    body: Any
    request: Dict[str, Any] = field(default_factory=dict)

    def replace(self, **kws):
        return replace(self, **kws)

@dataclass(frozen=True)
class CanisterCallEnvelope:
    content: Dict[str, Any]
    sender_pubkey: bytes
    sender_sig: bytes

    def as_dict(self):
        return dict(content=self.content, sender_pubkey=self.sender_pubkey,
                        sender_sig=self.sender_sig)

def _cbor_ready(val):
    # principals go on wire as raw bytes
    if isinstance(val, Principal):
        return val.raw
    if isinstance(val, dict):
        return {k: _cbor_ready(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [_cbor_ready(v) for v in val]
    return val

def cbor_encode(obj) -> bytes:
    # self-describing CBOR, like all IC clients produce
    return cbor2.dumps(cbor2.CBORTag(CBOR_SELF_DESCRIBE_TAG, _cbor_ready(obj)))

def cbor_decode(data: bytes):
    try:
        rv = cbor2.loads(data)
    except cbor2.CBORDecodeError as exc:
        raise DecodeError(f"Bad CBOR: {exc}")
    if isinstance(rv, cbor2.CBORTag) and rv.tag == CBOR_SELF_DESCRIBE_TAG:
        rv = rv.value
    return rv

def prepare_cbor_for_ledger(body) -> bytes:
    # the bytes the device parses, shows and signs
    return cbor_encode({'content': body})

def make_expiry(delta_ms: int, now_ns: Optional[int] = None) -> int:
    # ingress_expiry in nanoseconds since epoch
    # - rounded down to a whole minute when far enough out, so it's stable
    now_ns = time.time_ns() if now_ns is None else now_ns
    rv = now_ns + delta_ms * 1_000_000

    if delta_ms >= 90_000:
        minute = 60 * 1_000_000_000
        rv -= rv % minute

    return rv

#
# Representation-independent hashing of request content
#
def hash_value(val) -> bytes:
    if isinstance(val, Principal):
        val = val.raw
    if isinstance(val, str):
        return sha256(val.encode('utf-8')).digest()
    if isinstance(val, (bytes, bytearray, memoryview)):
        return sha256(bytes(val)).digest()
    if isinstance(val, bool):
        raise TypeError("no boolean values in requests")
    if isinstance(val, int):
        return sha256(leb128_encode(val)).digest()
    if isinstance(val, (list, tuple)):
        return sha256(b''.join(hash_value(v) for v in val)).digest()
    if isinstance(val, dict):
        return request_id_of(val)

    raise TypeError(f"Cannot hash value of type {type(val).__name__}")

def request_id_of(content: dict) -> bytes:
    # sha256 over sorted (hash(key) + hash(value)) pairs
    pairs = sorted(sha256(k.encode('utf-8')).digest() + hash_value(v)
                        for k, v in content.items() if v is not None)
    return sha256(b''.join(pairs)).digest()

def signing_digest(request_id: bytes) -> bytes:
    # what secp256k1 signatures over a request actually cover
    return sha256(domain_sep('ic-request') + bytes(request_id)).digest()

def call_content(canister_id, method_name, arg, sender, ingress_expiry, nonce=None) -> dict:
    rv = dict(request_type=REQUEST_TYPE_CALL,
                canister_id=as_principal(canister_id).raw,
                method_name=method_name,
                arg=bytes(arg),
                sender=as_principal(sender).raw,
                ingress_expiry=ingress_expiry)
    if nonce is not None:
        rv['nonce'] = nonce
    return rv

def read_state_content(paths, sender, ingress_expiry) -> dict:
    return dict(request_type=REQUEST_TYPE_READ_STATE,
                paths=[[bytes(p) if not isinstance(p, str) else p.encode('ascii')
                            for p in path] for path in paths],
                sender=as_principal(sender).raw,
                ingress_expiry=ingress_expiry)

# EOF
