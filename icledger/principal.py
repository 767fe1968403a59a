#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Principals: the identifiers used for callers and canisters.
#
import zlib
from base64 import b32encode, b32decode
from hashlib import sha224

# last byte of raw principal tells what kind it is
SELF_AUTHENTICATING_SUFFIX = 0x02
ANONYMOUS_SUFFIX = 0x04

class Principal:
    __slots__ = ('raw',)

    def __init__(self, raw: bytes):
        if len(raw) > 29:
            raise ValueError("principal too long")
        self.raw = bytes(raw)

    @classmethod
    def self_authenticating(cls, der_pubkey: bytes):
        # derived from DER public key, so anyone holding the key can prove ownership
        return cls(sha224(der_pubkey).digest() + bytes([SELF_AUTHENTICATING_SUFFIX]))

    @classmethod
    def anonymous(cls):
        return cls(bytes([ANONYMOUS_SUFFIX]))

    @classmethod
    def from_text(cls, text: str):
        # reverse of to_text, checks the CRC
        s = text.replace('-', '').upper()
        s += '=' * (-len(s) % 8)
        try:
            data = b32decode(s)
        except ValueError:
            raise ValueError(f"Not a principal: {text}")
        if len(data) < 4:
            raise ValueError(f"Not a principal: {text}")

        rv = cls(data[4:])
        if rv.to_text() != text.lower():
            raise ValueError(f"Principal checksum/format mismatch: {text}")
        return rv

    def to_text(self) -> str:
        # crc32 (big endian) + raw, base32 without padding, dash every 5 chars
        crc = zlib.crc32(self.raw).to_bytes(4, 'big')
        md = b32encode(crc + self.raw).decode('ascii').lower().rstrip('=')

        return '-'.join(md[pos:pos+5] for pos in range(0, len(md), 5))

    def is_anonymous(self):
        return self.raw == bytes([ANONYMOUS_SUFFIX])

    def __bytes__(self):
        return self.raw

    def __eq__(self, other):
        return isinstance(other, Principal) and other.raw == self.raw

    def __hash__(self):
        return hash(self.raw)

    def __lt__(self, other):
        return self.raw < other.raw

    def __str__(self):
        return self.to_text()

    def __repr__(self):
        return '<Principal %s>' % self.to_text()

def as_principal(val):
    # accept text, bytes or Principal
    if isinstance(val, Principal):
        return val
    if isinstance(val, str):
        return Principal.from_text(val)
    return Principal(bytes(val))

# EOF
