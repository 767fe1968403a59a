#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# ICRC-21: canister call consent messages.
#
# We always ask for the "FieldsDisplay" form: a short intent line and a list
# of (label, value) pairs. That's what the device screen can page through.
# Replies in the generic (single text blob) form are still accepted.
#
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Tuple, Union
from . import candid
from .candid import Record, Variant, Opt, Vec, Tuple as TupleT, Text, Nat8, Nat, Nat64, Int16, Null
from .exceptions import DecodeError, CallRejectedError

DISPLAY_FIELDS = 'FieldsDisplay'
DISPLAY_GENERIC = 'GenericDisplay'
DISPLAY_MODES = (DISPLAY_FIELDS, DISPLAY_GENERIC)

consent_message_metadata = Record({
    'utc_offset_minutes': Opt(Int16),
    'language': Text,
})

consent_message_spec = Record({
    'metadata': consent_message_metadata,
    'device_spec': Opt(Variant({
        'GenericDisplay': Null,
        'FieldsDisplay': Null,
    })),
})

consent_message_request = Record({
    'arg': Vec(Nat8),
    'method': Text,
    'user_preferences': consent_message_spec,
})

# every label we might see in a response; decoder needs them to name fields
LABELS = [
    'Ok', 'Err', 'metadata', 'consent_message', 'utc_offset_minutes', 'language',
    'FieldsDisplayMessage', 'GenericDisplayMessage', 'intent', 'fields',
    'Text', 'TokenAmount', 'TimestampSeconds', 'DurationSeconds',
    'content', 'amount', 'decimals', 'symbol',
    'GenericError', 'InsufficientPayment', 'UnsupportedCanisterCall',
    'ConsentMessageUnavailable', 'description', 'error_code',
    'arg', 'method', 'user_preferences', 'device_spec',
    'GenericDisplay', 'FieldsDisplay',
]

#
# Decoded message values
#
@dataclass(frozen=True)
class TextValue:
    content: str

    def render(self):
        return self.content

@dataclass(frozen=True)
class TokenAmount:
    amount: int
    decimals: int
    symbol: str

    def render(self):
        if not self.decimals:
            return f'{self.amount:,} {self.symbol}'
        whole, frac = divmod(self.amount, 10 ** self.decimals)
        frac = str(frac).rjust(self.decimals, '0').rstrip('0') or '0'
        return f'{whole:,}.{frac} {self.symbol}'

@dataclass(frozen=True)
class TimestampSeconds:
    amount: int

    def render(self):
        return datetime.fromtimestamp(self.amount, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')

@dataclass(frozen=True)
class DurationSeconds:
    amount: int

    def render(self):
        days, rem = divmod(self.amount, 86400)
        hours, rem = divmod(rem, 3600)
        mins, secs = divmod(rem, 60)
        parts = [f'{n}{u}' for n, u in ((days, 'd'), (hours, 'h'), (mins, 'm'), (secs, 's')) if n]
        return ' '.join(parts) or '0s'

Value = Union[TextValue, TokenAmount, TimestampSeconds, DurationSeconds]

@dataclass(frozen=True)
class GenericDisplayMessage:
    text: str

    def lines(self):
        return self.text.splitlines()

@dataclass(frozen=True)
class FieldsDisplayMessage:
    intent: str
    fields: List[Tuple[str, Value]]

    def lines(self):
        return [self.intent] + [f'{label}: {value.render()}' for label, value in self.fields]

ConsentMessage = Union[GenericDisplayMessage, FieldsDisplayMessage]

@dataclass(frozen=True)
class ConsentInfo:
    language: str
    utc_offset_minutes: object
    message: ConsentMessage

def build_consent_args(method, raw_args, language='en', display_mode=DISPLAY_FIELDS,
                            utc_offset_minutes=None):
    # args record for icrc21_canister_call_consent_message
    if display_mode not in DISPLAY_MODES:
        raise ValueError(f"display_mode must be one of {DISPLAY_MODES}")

    return {
        'arg': bytes(raw_args),
        'method': method,
        'user_preferences': {
            'metadata': {
                'language': language,
                'utc_offset_minutes': utc_offset_minutes,
            },
            'device_spec': { display_mode: None },
        },
    }

def encode_consent_args(args) -> bytes:
    return candid.encode([consent_message_request], [args])

def _value(val):
    # older interface revision has plain text values
    if isinstance(val, str):
        return TextValue(val)

    if not isinstance(val, dict) or len(val) != 1:
        raise DecodeError(f"Bad consent field value: {val!r}")

    (tag, here), = val.items()
    try:
        if tag == 'Text':
            return TextValue(here['content'])
        if tag == 'TokenAmount':
            return TokenAmount(amount=here['amount'], decimals=here['decimals'],
                                    symbol=here['symbol'])
        if tag == 'TimestampSeconds':
            return TimestampSeconds(here['amount'])
        if tag == 'DurationSeconds':
            return DurationSeconds(here['amount'])
    except (KeyError, TypeError):
        raise DecodeError(f"Bad {tag} value in consent message")

    raise DecodeError(f"Unknown consent value type: {tag}")

def _message(msg):
    if not isinstance(msg, dict) or len(msg) != 1:
        raise DecodeError("Bad consent_message variant")

    (tag, here), = msg.items()
    if tag == 'GenericDisplayMessage':
        if not isinstance(here, str):
            raise DecodeError("Bad GenericDisplayMessage")
        return GenericDisplayMessage(here)

    if tag == 'FieldsDisplayMessage':
        try:
            fields = [(label, _value(v)) for label, v in here['fields']]
            return FieldsDisplayMessage(intent=here['intent'], fields=fields)
        except (KeyError, TypeError, ValueError):
            raise DecodeError("Bad FieldsDisplayMessage")

    raise DecodeError(f"Unknown consent message type: {tag}")

def decode_consent_response(reply: bytes) -> ConsentInfo:
    # reply bytes (Candid) => ConsentInfo, or raise
    vals = candid.decode(reply, LABELS)
    if len(vals) != 1 or not isinstance(vals[0], dict) or len(vals[0]) != 1:
        raise DecodeError("Expected one icrc21_consent_message_response value")

    (tag, here), = vals[0].items()
    if tag == 'Err':
        if not isinstance(here, dict) or len(here) != 1:
            raise DecodeError("Bad icrc21_error value")
        (kind, detail), = here.items()
        detail = detail if isinstance(detail, dict) else {}
        raise CallRejectedError(detail.get('description', kind), error_code=kind)

    if tag != 'Ok' or not isinstance(here, dict):
        raise DecodeError(f"Unexpected response variant: {tag}")

    try:
        meta = here['metadata']
        return ConsentInfo(language=meta['language'],
                            utc_offset_minutes=meta.get('utc_offset_minutes'),
                            message=_message(here['consent_message']))
    except (KeyError, AttributeError):
        raise DecodeError("Missing fields in icrc21_consent_info")

#
# Response types, for building replies (tests, emulator)
#
consent_value = Variant({
    'Text': Record({'content': Text}),
    'TokenAmount': Record({'decimals': Nat8, 'amount': Nat64, 'symbol': Text}),
    'TimestampSeconds': Record({'amount': Nat64}),
    'DurationSeconds': Record({'amount': Nat64}),
})

consent_message = Variant({
    'FieldsDisplayMessage': Record({
        'intent': Text,
        'fields': Vec(TupleT(Text, consent_value)),
    }),
    'GenericDisplayMessage': Text,
})

error_info = Record({'description': Text})

consent_message_response = Variant({
    'Ok': Record({
        'metadata': consent_message_metadata,
        'consent_message': consent_message,
    }),
    'Err': Variant({
        'GenericError': Record({'description': Text, 'error_code': Nat}),
        'InsufficientPayment': error_info,
        'UnsupportedCanisterCall': error_info,
        'ConsentMessageUnavailable': error_info,
    }),
})

def encode_consent_response(resp) -> bytes:
    return candid.encode([consent_message_response], [resp])

# EOF
