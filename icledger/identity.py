#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Identities: who signs requests for the agent.
#
# - LedgerIdentity: private key stays on the Ledger device
# - AnonymousIdentity: no signature at all
#
from .constants import DEFAULT_DERIVE_PATH, SIGNATURE_LENGTH, CALL_EXPIRY_MS
from .exceptions import IdentityCreationError, SignatureLengthError
from .keys import Secp256k1PublicKey
from .principal import Principal
from .proto import execute
from .request import (CanisterCallEnvelope, REQUEST_TYPE_CALL, REQUEST_TYPE_READ_STATE,
                        prepare_cbor_for_ledger, make_expiry)
from .utils import check_derivation_path, derivation_path

class Identity:
    #
    # What the agent needs: a principal, and a way to turn a request into
    # the signed thing that goes on the wire.
    #
    def get_principal(self) -> Principal:
        raise NotImplementedError

    def transform_request(self, request):
        raise NotImplementedError


class AnonymousIdentity(Identity):

    def get_principal(self):
        return Principal.anonymous()

    def get_public_key(self):
        return None

    def transform_request(self, request):
        # no sender_pubkey, no sender_sig
        return request.replace(body={'content': request.body})


def fetch_public_key(app, derive_path) -> Secp256k1PublicKey:
    # Get pubkey from device, and cross-check the principal it computed
    info = app.get_address_and_pubkey(derive_path)

    try:
        pubkey = Secp256k1PublicKey(info.public_key)
    except ValueError as exc:
        raise IdentityCreationError(f"Device returned a bad public key: {exc}")

    if info.principal_text != pubkey.principal().to_text():
        raise IdentityCreationError("Principal returned by device does not match public key.")

    return pubkey


class LedgerIdentity(Identity):
    #
    # A Hardware Ledger Internet Computer Agent identity.
    #
    # Every device operation opens a fresh session, checks it's still the
    # same device (same public key), does the work and closes it again.
    #
    def __init__(self, derive_path, public_key, consent=None, providers=None):
        # use create() instead
        self._derive_path = derive_path
        self._public_key = public_key
        self._consent = consent
        self._providers = providers

        # signals that the next transaction to be signed is special
        # (e.g. "stake neuron") and needs different display on device
        self._pending_special = False

    @classmethod
    def create(cls, derive_path=DEFAULT_DERIVE_PATH, consent=None, providers=None):
        # Fetch identity from device. Device is released in all cases.
        # - consent: optional ConsentVerifier, enables consent-verified signing of calls
        derive_path = check_derivation_path(derive_path)

        pubkey = execute(derive_path, lambda app: fetch_public_key(app, derive_path),
                            providers=providers)

        return cls(derive_path, pubkey, consent=consent, providers=providers)

    @classmethod
    def for_index(cls, index, **kws):
        # checks index range before any device I/O
        return cls.create(derivation_path(index), **kws)

    def __repr__(self):
        return '<%s %s %s>' % (self.__class__.__name__, self._derive_path, self.get_principal())

    @property
    def derive_path(self):
        return self._derive_path

    @property
    def public_key(self) -> Secp256k1PublicKey:
        return self._public_key

    @property
    def consent_verified(self):
        return self._consent is not None

    def get_public_key(self) -> bytes:
        # DER, no device I/O
        return self._public_key.to_der()

    def get_principal(self) -> Principal:
        return self._public_key.principal()

    def flag_pending_special_transaction(self):
        # affects exactly the next sign() call
        self._pending_special = True

    flag_upcoming_stake_neuron = flag_pending_special_transaction

    def _execute(self, fn):
        return execute(self._derive_path, fn, expected_public_key=self._public_key,
                            providers=self._providers)

    def _take_special_flag(self):
        # consumed no matter what happens next
        rv = 1 if self._pending_special else 0
        self._pending_special = False
        return rv

    def _check_signature(self, resp):
        sig = resp.signature_rs
        if len(sig) != SIGNATURE_LENGTH:
            raise SignatureLengthError(len(sig))
        return bytes(sig)

    def sign(self, blob: bytes) -> bytes:
        # operator approves on device; returns 64 byte r||s signature
        flag = self._take_special_flag()
        resp = self._execute(lambda app: app.sign(self._derive_path, blob, flag))

        return self._check_signature(resp)

    def sign_with_context(self, consent_request_hex, call_hex, certificate_hex,
                                root_key_hex=None) -> bytes:
        # signature bound to the consent message shown on device
        self._take_special_flag()
        resp = self._execute(lambda app: app.sign_with_context(self._derive_path,
                                consent_request_hex, call_hex, certificate_hex,
                                root_key_hex=root_key_hex))

        return self._check_signature(resp)

    def get_version(self):
        # version of the Internet Computer app; never cached
        return self._execute(lambda app: app.get_version())

    def show_address_and_pubkey_on_device(self):
        # Required by Ledger.com: user should be able to verify the
        # address/pubkey are the same as on the device screen.
        return self._execute(lambda app: app.show_address_and_pubkey(self._derive_path))

    def get_supported_tokens(self):
        return self._execute(lambda app: app.get_supported_tokens())

    def _wrap(self, request, content, signature):
        env = CanisterCallEnvelope(content=content, sender_pubkey=self.get_public_key(),
                                        sender_sig=signature)
        return request.replace(body=env.as_dict())

    def transform_request(self, request):
        # Sign what the agent is about to send. Errors abort; nothing partial returned.
        body = request.body
        kind = body.get('request_type')

        if kind == REQUEST_TYPE_READ_STATE:
            sig = self.sign(prepare_cbor_for_ledger(body))
            return self._wrap(request, body, sig)

        if kind != REQUEST_TYPE_CALL:
            raise ValueError(f"Ledger cannot sign requests of type {kind!r}; "
                                "use an anonymous agent for queries")

        # device limits how far out the expiry may be
        body = dict(body, ingress_expiry=make_expiry(CALL_EXPIRY_MS))
        blob = prepare_cbor_for_ledger(body)

        if self._consent is None:
            sig = self.sign(blob)
        else:
            art = self._consent.obtain_consent(body['canister_id'], body['method_name'], body['arg'])
            sig = self.sign_with_context(art.consent_request_hex, blob.hex(), art.certificate_hex,
                                            root_key_hex=self._consent.root_key_hex_for_device())

        return self._wrap(request, body, sig)

# EOF
