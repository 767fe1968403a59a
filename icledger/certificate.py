#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Certificates: proofs over IC state, signed by the subnet (BLS, min-sig
# variant), possibly via a delegation from the root subnet.
#
# Verify before trusting anything looked up inside.
#
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Optional
from .constants import BLS_DER_PREFIX, BLS_KEY_LENGTH, BLS_SIGNATURE_LENGTH, CERTIFICATE_MAX_AGE_MINUTES
from .exceptions import CertificateVerificationError, DecodeError
from .principal import as_principal
from .request import cbor_decode
from .utils import domain_sep, leb128_decode

# hash tree node types
NODE_EMPTY   = 0
NODE_FORK    = 1
NODE_LABELED = 2
NODE_LEAF    = 3
NODE_PRUNED  = 4

# ciphersuite used by the IC for state signatures
BLS_DST = b'BLS_SIG_BLS12381G1_XMD:SHA-256_SSWU_RO_NUL_'

def reconstruct(tree) -> bytes:
    # root hash of a (possibly pruned) hash tree
    try:
        kind = tree[0]
        if kind == NODE_EMPTY:
            return sha256(domain_sep('ic-hashtree-empty')).digest()
        if kind == NODE_FORK:
            return sha256(domain_sep('ic-hashtree-fork')
                            + reconstruct(tree[1]) + reconstruct(tree[2])).digest()
        if kind == NODE_LABELED:
            return sha256(domain_sep('ic-hashtree-labeled')
                            + bytes(tree[1]) + reconstruct(tree[2])).digest()
        if kind == NODE_LEAF:
            return sha256(domain_sep('ic-hashtree-leaf') + bytes(tree[1])).digest()
        if kind == NODE_PRUNED:
            return bytes(tree[1])
    except (IndexError, TypeError):
        pass

    raise CertificateVerificationError(f"Malformed hash tree node: {tree!r:.80}")

def _flatten_forks(tree):
    if tree[0] == NODE_EMPTY:
        return []
    if tree[0] == NODE_FORK:
        return _flatten_forks(tree[1]) + _flatten_forks(tree[2])
    return [tree]

def _label(part):
    if isinstance(part, str):
        return part.encode('ascii')
    return bytes(part)

def lookup_path(path, tree) -> Optional[bytes]:
    # value of leaf at path, or None if absent/pruned
    if not path:
        if tree[0] == NODE_LEAF:
            return bytes(tree[1])
        return None

    want = _label(path[0])
    for node in _flatten_forks(tree):
        if node[0] == NODE_LABELED and bytes(node[1]) == want:
            return lookup_path(path[1:], node[2])

    return None

def extract_bls_key(der_key: bytes) -> bytes:
    # DER-wrapped BLS public key => raw 96 bytes
    der_key = bytes(der_key)
    if len(der_key) == BLS_KEY_LENGTH:
        return der_key
    if len(der_key) != len(BLS_DER_PREFIX) + BLS_KEY_LENGTH or not der_key.startswith(BLS_DER_PREFIX):
        raise CertificateVerificationError("Root/subnet key is not a DER-encoded BLS key")
    return der_key[len(BLS_DER_PREFIX):]

def bls_verify(public_key: bytes, signature: bytes, message: bytes) -> bool:
    # BLS12-381, signature in G1 (48 bytes), public key in G2 (96 bytes)
    # - py_ecc names these for the other variant, hence the odd-looking calls
    if len(signature) != BLS_SIGNATURE_LENGTH or len(public_key) != BLS_KEY_LENGTH:
        return False

    from py_ecc.bls.g2_primitives import pubkey_to_G1, signature_to_G2
    from py_ecc.bls.hash_to_curve import hash_to_G1
    from py_ecc.optimized_bls12_381 import FQ12, G2, neg, pairing, final_exponentiate, is_inf

    try:
        sig_pt = pubkey_to_G1(signature)
        key_pt = signature_to_G2(public_key)
    except (ValueError, AssertionError):
        return False

    if is_inf(sig_pt) or is_inf(key_pt):
        return False

    msg_pt = hash_to_G1(message, BLS_DST, sha256)

    rv = final_exponentiate(pairing(G2, sig_pt, final_exponentiate=False)
                            * pairing(neg(key_pt), msg_pt, final_exponentiate=False))
    return rv == FQ12.one()

@dataclass(frozen=True)
class RequestStatus:
    status: Optional[str]
    reply: Optional[bytes] = None
    reject_code: Optional[int] = None
    reject_message: Optional[str] = None
    error_code: Optional[str] = None


class Certificate:

    def __init__(self, raw: bytes):
        # parse only; use create() to get a verified one
        self.raw = bytes(raw)
        try:
            cert = cbor_decode(self.raw)
            self.tree = cert['tree']
            self.signature = bytes(cert['signature'])
            self.delegation = cert.get('delegation')
        except (DecodeError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CertificateVerificationError(f"Cannot parse certificate: {exc}")

    @classmethod
    def create(cls, certificate: bytes, root_key: bytes, canister_id,
                    max_age_minutes=CERTIFICATE_MAX_AGE_MINUTES, now_ns=None):
        # parse and verify, or raise CertificateVerificationError
        rv = cls(certificate)
        rv.verify(root_key, canister_id, max_age_minutes=max_age_minutes, now_ns=now_ns)
        return rv

    def lookup(self, path) -> Optional[bytes]:
        return lookup_path(path, self.tree)

    def root_hash(self) -> bytes:
        return reconstruct(self.tree)

    def verify(self, root_key, canister_id, max_age_minutes=CERTIFICATE_MAX_AGE_MINUTES, now_ns=None):
        if self.delegation:
            key = self._check_delegation(root_key, canister_id)
        else:
            key = root_key

        self._check_signature(key)

        if max_age_minutes is not None:
            self._check_time(max_age_minutes, now_ns)

    def _check_signature(self, der_key):
        msg = domain_sep('ic-state-root') + self.root_hash()
        if not bls_verify(extract_bls_key(der_key), self.signature, msg):
            raise CertificateVerificationError("Invalid certificate: signature verification failed")

    def _check_time(self, max_age_minutes, now_ns):
        raw = self.lookup(['time'])
        if raw is None:
            raise CertificateVerificationError("Certificate has no time")

        cert_time, _ = leb128_decode(raw)
        now_ns = time.time_ns() if now_ns is None else now_ns
        window = max_age_minutes * 60 * 1_000_000_000

        if cert_time < now_ns - window:
            raise CertificateVerificationError("Certificate is stale (check system clock)")
        if cert_time > now_ns + window:
            raise CertificateVerificationError("Certificate is from the future (check system clock)")

    def _check_delegation(self, root_key, canister_id):
        # returns subnet's DER key, after checking it's vouched for by root,
        # and that the canister lives on that subnet
        try:
            subnet_id = bytes(self.delegation['subnet_id'])
            inner = Certificate(self.delegation['certificate'])
        except (KeyError, TypeError) as exc:
            raise CertificateVerificationError(f"Malformed delegation: {exc}")

        if inner.delegation:
            raise CertificateVerificationError("Nested delegations are not allowed")

        inner._check_signature(root_key)

        raw_ranges = inner.lookup(['subnet', subnet_id, 'canister_ranges'])
        if raw_ranges is None:
            raise CertificateVerificationError("Delegation has no canister ranges")

        try:
            ranges = [(bytes(lo), bytes(hi)) for lo, hi in cbor_decode(raw_ranges)]
        except (DecodeError, ValueError, TypeError) as exc:
            raise CertificateVerificationError(f"Bad canister ranges: {exc}")

        cid = as_principal(canister_id).raw
        if not any(lo <= cid <= hi for lo, hi in ranges):
            raise CertificateVerificationError("Canister is not in the delegated subnet's range")

        key = inner.lookup(['subnet', subnet_id, 'public_key'])
        if key is None:
            raise CertificateVerificationError("Delegation has no subnet public key")

        return key

def lookup_request_status(cert: Certificate, request_id: bytes) -> RequestStatus:
    # pull the request_status/<id>/* leaves out of verified certificate
    base = [b'request_status', request_id]

    raw = cert.lookup(base + [b'status'])
    if raw is None:
        return RequestStatus(status=None)

    status = raw.decode('ascii', 'replace')
    if status == 'replied':
        return RequestStatus(status=status, reply=cert.lookup(base + [b'reply']))

    if status == 'rejected':
        code = cert.lookup(base + [b'reject_code'])
        msg = cert.lookup(base + [b'reject_message'])
        err = cert.lookup(base + [b'error_code'])
        try:
            code = leb128_decode(code)[0] if code else None
        except ValueError:
            raise DecodeError("Bad reject_code in certificate")
        return RequestStatus(status=status, reject_code=code,
                                reject_message=msg.decode('utf-8', 'replace') if msg else '',
                                error_code=err.decode('ascii', 'replace') if err else None)

    return RequestStatus(status=status)

# EOF
