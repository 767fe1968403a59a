#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Candid: just enough to build ICRC-21 requests and read their replies.
#
# - encoder is driven by type objects (below)
# - decoder is driven by the type table found in the message itself, so it
#   copes with newer/older revisions of the interface
# - no func/service/recursive types
#
import struct
from .exceptions import DecodeError
from .principal import Principal
from .utils import leb128_encode, sleb128_encode, leb128_decode, sleb128_decode

MAGIC = b'DIDL'

# vec(null) and friends take no bytes per element, so bound them separately
MAX_ZERO_WIDTH_VEC = 10_000

# type opcodes
T_NULL      = -1
T_BOOL      = -2
T_NAT       = -3
T_INT       = -4
T_NAT8      = -5
T_NAT16     = -6
T_NAT32     = -7
T_NAT64     = -8
T_INT8      = -9
T_INT16     = -10
T_INT32     = -11
T_INT64     = -12
T_FLOAT32   = -13
T_FLOAT64   = -14
T_TEXT      = -15
T_RESERVED  = -16
T_EMPTY     = -17
T_OPT       = -18
T_VEC       = -19
T_RECORD    = -20
T_VARIANT   = -21
T_PRINCIPAL = -24

# fixed-width numbers: opcode => struct format
FIXED = {
    T_NAT8: '<B', T_NAT16: '<H', T_NAT32: '<I', T_NAT64: '<Q',
    T_INT8: '<b', T_INT16: '<h', T_INT32: '<i', T_INT64: '<q',
    T_FLOAT32: '<f', T_FLOAT64: '<d',
}

def idl_hash(name: str) -> int:
    # field id for a label
    rv = 0
    for b in name.encode('utf-8'):
        rv = (rv * 223 + b) & 0xffffffff
    return rv

class _TypeTable:
    def __init__(self):
        self.entries = []
        self.index = {}

    def add(self, typ, build):
        # returns index for compound type; builds it once
        key = id(typ)
        if key in self.index:
            return self.index[key]
        idx = len(self.entries)
        self.index[key] = idx
        self.entries.append(None)
        self.entries[idx] = build()
        return idx

class CandidType:
    def type_ref(self, table) -> int:
        raise NotImplementedError

    def encode_value(self, val) -> bytes:
        raise NotImplementedError

class Primitive(CandidType):
    def __init__(self, opcode, name):
        self.opcode = opcode
        self.name = name

    def __repr__(self):
        return self.name

    def type_ref(self, table):
        return self.opcode

    def encode_value(self, val):
        op = self.opcode
        if op == T_NULL or op == T_RESERVED:
            return b''
        if op == T_BOOL:
            return b'\x01' if val else b'\x00'
        if op == T_NAT:
            return leb128_encode(int(val))
        if op == T_INT:
            return sleb128_encode(int(val))
        if op in FIXED:
            try:
                return struct.pack(FIXED[op], val)
            except struct.error as exc:
                raise ValueError(f"{self.name}: {exc}")
        if op == T_TEXT:
            raw = val.encode('utf-8')
            return leb128_encode(len(raw)) + raw
        if op == T_PRINCIPAL:
            raw = bytes(val)
            return b'\x01' + leb128_encode(len(raw)) + raw

        raise ValueError(f"cannot encode {self.name}")

Null = Primitive(T_NULL, 'null')
Bool = Primitive(T_BOOL, 'bool')
Nat = Primitive(T_NAT, 'nat')
Int = Primitive(T_INT, 'int')
Nat8 = Primitive(T_NAT8, 'nat8')
Nat16 = Primitive(T_NAT16, 'nat16')
Nat32 = Primitive(T_NAT32, 'nat32')
Nat64 = Primitive(T_NAT64, 'nat64')
Int8 = Primitive(T_INT8, 'int8')
Int16 = Primitive(T_INT16, 'int16')
Int32 = Primitive(T_INT32, 'int32')
Int64 = Primitive(T_INT64, 'int64')
Float64 = Primitive(T_FLOAT64, 'float64')
Text = Primitive(T_TEXT, 'text')
PrincipalT = Primitive(T_PRINCIPAL, 'principal')

class Opt(CandidType):
    # None or the value
    def __init__(self, inner):
        self.inner = inner

    def type_ref(self, table):
        return table.add(self, lambda: sleb128_encode(T_OPT) + sleb128_encode(self.inner.type_ref(table)))

    def encode_value(self, val):
        if val is None:
            return b'\x00'
        return b'\x01' + self.inner.encode_value(val)

class Vec(CandidType):
    def __init__(self, inner):
        self.inner = inner

    def type_ref(self, table):
        return table.add(self, lambda: sleb128_encode(T_VEC) + sleb128_encode(self.inner.type_ref(table)))

    def encode_value(self, val):
        if self.inner is Nat8 and isinstance(val, (bytes, bytearray)):
            return leb128_encode(len(val)) + bytes(val)
        return leb128_encode(len(val)) + b''.join(self.inner.encode_value(v) for v in val)

class Record(CandidType):
    # fields: dict of label => type; value: dict of label => value
    opcode = T_RECORD

    def __init__(self, fields):
        self.fields = sorted(((idl_hash(k) if isinstance(k, str) else k, k, t)
                                    for k, t in fields.items()), key=lambda x: x[0])

    def type_ref(self, table):
        def build():
            # children first, so their refs exist
            refs = [(h, t.type_ref(table)) for h, _, t in self.fields]
            return sleb128_encode(self.opcode) + leb128_encode(len(refs)) \
                    + b''.join(leb128_encode(h) + sleb128_encode(r) for h, r in refs)
        return table.add(self, build)

    def encode_value(self, val):
        try:
            return b''.join(t.encode_value(val[k]) for _, k, t in self.fields)
        except KeyError as exc:
            raise ValueError(f"missing record field: {exc}")

class Tuple(Record):
    def __init__(self, *types):
        super().__init__({n: t for n, t in enumerate(types)})

    def encode_value(self, val):
        return super().encode_value(dict(enumerate(val)))

class Variant(Record):
    # value: dict with exactly one label
    opcode = T_VARIANT

    def encode_value(self, val):
        if len(val) != 1:
            raise ValueError("variant value needs exactly one tag")
        (tag, here), = val.items()
        for idx, (_, k, t) in enumerate(self.fields):
            if k == tag:
                return leb128_encode(idx) + t.encode_value(here)
        raise ValueError(f"unknown variant tag: {tag}")

def encode(types, values) -> bytes:
    # serialize argument list
    assert len(types) == len(values)

    table = _TypeTable()
    refs = [t.type_ref(table) for t in types]
    body = b''.join(t.encode_value(v) for t, v in zip(types, values))

    return MAGIC + leb128_encode(len(table.entries)) + b''.join(table.entries) \
            + leb128_encode(len(refs)) + b''.join(sleb128_encode(r) for r in refs) + body

#
# Decoding
#
class _Reader:
    def __init__(self, data):
        self.data = bytes(data)
        self.pos = 0

    def take(self, n):
        if self.pos + n > len(self.data):
            raise DecodeError("Candid message truncated")
        rv = self.data[self.pos:self.pos+n]
        self.pos += n
        return rv

    def remaining(self):
        return len(self.data) - self.pos

    def leb(self):
        try:
            rv, self.pos = leb128_decode(self.data, self.pos)
        except ValueError as exc:
            raise DecodeError(str(exc))
        return rv

    def sleb(self):
        try:
            rv, self.pos = sleb128_decode(self.data, self.pos)
        except ValueError as exc:
            raise DecodeError(str(exc))
        return rv

class _Decoder:
    def __init__(self, data, names):
        self.rd = _Reader(data)
        self.names = {idl_hash(n): n for n in names}
        self.table = []

    def zero_width(self, ref, depth=0):
        # true when values of this type occupy no bytes on the wire
        if ref in (T_NULL, T_RESERVED):
            return True
        if 0 <= ref < len(self.table) and depth < 100:
            op, arg = self.table[ref]
            if op == T_RECORD:
                return all(self.zero_width(r, depth+1) for _, r in arg)
        return False

    def read_table(self):
        rd = self.rd
        for _ in range(rd.leb()):
            op = rd.sleb()
            if op in (T_OPT, T_VEC):
                self.table.append((op, rd.sleb()))
            elif op in (T_RECORD, T_VARIANT):
                fields = [(rd.leb(), rd.sleb()) for _ in range(rd.leb())]
                self.table.append((op, fields))
            else:
                raise DecodeError(f"Unsupported Candid type in table: {op}")

    def value(self, ref, depth=0):
        rd = self.rd
        if depth > 100:
            raise DecodeError("Candid value nested too deeply")

        if ref >= 0:
            if ref >= len(self.table):
                raise DecodeError(f"Bad Candid type reference: {ref}")
            op, arg = self.table[ref]

            if op == T_OPT:
                flag = rd.take(1)[0]
                if flag == 0:
                    return None
                if flag != 1:
                    raise DecodeError("Bad opt flag")
                return self.value(arg, depth+1)

            if op == T_VEC:
                count = rd.leb()
                if arg == T_NAT8:
                    return rd.take(count)
                if self.zero_width(arg):
                    if count > MAX_ZERO_WIDTH_VEC:
                        raise DecodeError(f"Candid vec too long: {count}")
                elif count > rd.remaining():
                    raise DecodeError("Candid message truncated")
                return [self.value(arg, depth+1) for _ in range(count)]

            if op == T_RECORD:
                vals = [(h, self.value(r, depth+1)) for h, r in arg]
                if [h for h, _ in vals] == list(range(len(vals))):
                    return tuple(v for _, v in vals)
                return {self.names.get(h, h): v for h, v in vals}

            # variant
            idx = rd.leb()
            if idx >= len(arg):
                raise DecodeError(f"Variant index out of range: {idx}")
            h, r = arg[idx]
            return {self.names.get(h, h): self.value(r, depth+1)}

        if ref in (T_NULL, T_RESERVED):
            return None
        if ref == T_BOOL:
            b = rd.take(1)[0]
            if b > 1:
                raise DecodeError("Bad bool")
            return bool(b)
        if ref == T_NAT:
            return rd.leb()
        if ref == T_INT:
            return rd.sleb()
        if ref in FIXED:
            fmt = FIXED[ref]
            return struct.unpack(fmt, rd.take(struct.calcsize(fmt)))[0]
        if ref == T_TEXT:
            raw = rd.take(rd.leb())
            try:
                return raw.decode('utf-8')
            except UnicodeDecodeError:
                raise DecodeError("Bad utf-8 in text value")
        if ref == T_PRINCIPAL:
            if rd.take(1) != b'\x01':
                raise DecodeError("Opaque principal reference")
            return Principal(rd.take(rd.leb()))

        raise DecodeError(f"Cannot decode Candid type {ref}")

    def decode(self):
        rd = self.rd
        if rd.take(4) != MAGIC:
            raise DecodeError("Not a Candid message (bad magic)")

        self.read_table()
        refs = [rd.sleb() for _ in range(rd.leb())]
        rv = [self.value(r) for r in refs]

        if rd.pos != len(rd.data):
            raise DecodeError("Trailing bytes after Candid values")

        return rv

def decode(data: bytes, names=()) -> list:
    # returns list of argument values; records become dicts (keys: known
    # label names, else numeric hash), tuples become tuples
    return _Decoder(data, names).decode()

# EOF
