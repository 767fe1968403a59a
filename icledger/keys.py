#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Public key material as fetched from the device.
#
# - device gives 65-byte uncompressed secp256k1 keys
# - the IC wants DER (SubjectPublicKeyInfo) everywhere
#
from coincurve import PublicKey
from coincurve.ecdsa import deserialize_compact, cdata_to_der
from .constants import SECP256K1_DER_PREFIX, SECP256K1_PUBKEY_LENGTH, SIGNATURE_LENGTH
from .principal import Principal

class Secp256k1PublicKey:

    def __init__(self, raw: bytes):
        if len(raw) != SECP256K1_PUBKEY_LENGTH or raw[0] != 0x04:
            raise ValueError("expecting uncompressed secp256k1 public key")

        # point must be on curve; coincurve raises ValueError if not
        PublicKey(raw)

        self._raw = bytes(raw)

    @classmethod
    def from_raw(cls, raw):
        # accepts compressed keys too, but always keeps uncompressed form
        return cls(PublicKey(bytes(raw)).format(compressed=False))

    @classmethod
    def from_der(cls, der):
        if not der.startswith(SECP256K1_DER_PREFIX):
            raise ValueError("not a DER-encoded secp256k1 key")
        return cls(der[len(SECP256K1_DER_PREFIX):])

    def to_raw(self) -> bytes:
        return self._raw

    def to_der(self) -> bytes:
        return SECP256K1_DER_PREFIX + self._raw

    def principal(self) -> Principal:
        return Principal.self_authenticating(self.to_der())

    def verify(self, signature: bytes, digest: bytes) -> bool:
        # check 64-byte r||s signature over a 32-byte digest
        if len(signature) != SIGNATURE_LENGTH:
            return False
        der = cdata_to_der(deserialize_compact(bytes(signature)))
        return PublicKey(self._raw).verify(der, digest, hasher=None)

    def __eq__(self, other):
        return isinstance(other, Secp256k1PublicKey) and other._raw == self._raw

    def __hash__(self):
        return hash(self._raw)

    def __repr__(self):
        return '<Secp256k1PublicKey %s>' % self._raw.hex()

# EOF
