# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
import struct
from binascii import b2a_hex
from .constants import *

# show bytes as hex in a string
B2A = lambda x: b2a_hex(x).decode('ascii')

# high bit set in LE32 indicating hardened BIP-32 path component
HARDENED = 0x8000_0000

def path_component_in_range(num: int) -> bool:
    # cannot be less than 0
    # cannot be more than (2 ** 31) - 1
    if 0 <= num < HARDENED:
        return True
    return False

def path2str(path):
    # take numeric path (list of numbers) and convert to human form
    # - the ICP app and its users write "m/44'/223'" style
    return '/'.join(['m'] + [str(i & ~HARDENED)+("'" if i&HARDENED else '') for i in path])

def str2path(path):
    # normalize notation and return numbers
    rv = []

    for i in path.split('/'):
        if i == 'm':
            continue
        if not i:
            # trailing or duplicated slashes
            continue

        if i[-1] in "'phHP":
            if len(i) < 2:
                raise ValueError(f"Malformed bip32 path component: {i}")
            num = int(i[:-1], 10)
            if not path_component_in_range(num):
                raise ValueError(f"Hardened path component out of range: {i}")
            here = num | HARDENED
        else:
            here = int(i, 10)
            if not path_component_in_range(here):
                raise ValueError(f"Non-hardened path component out of range: {i}")

        rv.append(here)

    return rv

def derivation_path(index: int) -> str:
    # text path for the Nth principal on the device
    if not isinstance(index, int) or not (MIN_PATH_INDEX <= index <= MAX_PATH_INDEX):
        raise ValueError(f"Principal path must be between {MIN_PATH_INDEX} and "
                            f"{MAX_PATH_INDEX} inclusive.")
    return DERIVE_PATH_TEMPLATE.format(index=index)

def check_derivation_path(path: str) -> str:
    # accept only paths of form m/44'/223'/0'/0/<index>; returns normalized text
    try:
        nums = str2path(path)
    except ValueError as exc:
        raise ValueError(f"Bad derivation path {path!r}: {exc}")

    if len(nums) != DERIVE_PATH_DEPTH:
        raise ValueError(f"Derivation path must have {DERIVE_PATH_DEPTH} components: {path}")

    purpose, coin, account, change, index = nums
    if purpose != (44 | HARDENED) or coin != (ICP_COIN_TYPE | HARDENED):
        raise ValueError(f"Not an Internet Computer derivation path: {path}")
    if not (account & HARDENED) or (change & HARDENED) or (index & HARDENED):
        raise ValueError(f"Unexpected hardening in derivation path: {path}")

    # device would happily use larger values, but we don't
    derivation_path(index)

    return path2str(nums)

def serialize_path(path: str) -> bytes:
    # binary form the device wants: 5 x LE32
    nums = str2path(path)
    assert len(nums) == DERIVE_PATH_DEPTH
    return b''.join(struct.pack('<I', n) for n in nums)

#
# LEB128 encodings, used by Candid and for integers inside request ids
#
def leb128_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("unsigned LEB128 needs n >= 0")
    rv = bytearray()
    while True:
        b = n & 0x7f
        n >>= 7
        if n:
            rv.append(b | 0x80)
        else:
            rv.append(b)
            return bytes(rv)

def sleb128_encode(n: int) -> bytes:
    rv = bytearray()
    while True:
        b = n & 0x7f
        n >>= 7
        if (n == 0 and not (b & 0x40)) or (n == -1 and (b & 0x40)):
            rv.append(b)
            return bytes(rv)
        rv.append(b | 0x80)

def leb128_decode(buf: bytes, pos: int = 0):
    # returns (value, new position)
    rv = shift = 0
    while True:
        if pos >= len(buf):
            raise ValueError("truncated LEB128")
        b = buf[pos]
        pos += 1
        rv |= (b & 0x7f) << shift
        shift += 7
        if not (b & 0x80):
            return rv, pos

def sleb128_decode(buf: bytes, pos: int = 0):
    rv = shift = 0
    while True:
        if pos >= len(buf):
            raise ValueError("truncated SLEB128")
        b = buf[pos]
        pos += 1
        rv |= (b & 0x7f) << shift
        shift += 7
        if not (b & 0x80):
            if b & 0x40:
                rv -= (1 << shift)
            return rv, pos

def domain_sep(label: str) -> bytes:
    # length-prefixed domain separator, IC style
    lb = label.encode('ascii')
    assert len(lb) < 256
    return bytes([len(lb)]) + lb

def force_bytes(foo):
    # convert hex strings to bytes where needed
    return bytes.fromhex(foo) if isinstance(foo, str) else bytes(foo)

# EOF
