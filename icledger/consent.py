#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Consent messages: ask the target canister (anonymously) to describe a call
# in human terms, prove the answer is genuine, and bundle up what the device
# needs to show it and sign.
#
# Steps are strictly in order: query, certify, then sign.
#
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from .agent import HttpAgent, SubmitResponse, RetryPolicy, final_reply
from .certificate import Certificate, lookup_request_status
from .constants import CONSENT_METHOD
from .exceptions import CallRejectedError
from .icrc21 import (ConsentInfo, DISPLAY_FIELDS, build_consent_args,
                        encode_consent_args, decode_consent_response)
from .principal import as_principal
from .request import prepare_cbor_for_ledger

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class ConsentArtifacts:
    request_details: Dict[str, Any]     # content of our consent-message call
    args: Dict[str, Any]
    certificate: bytes                  # raw, verified
    info: ConsentInfo

    @property
    def message(self):
        return self.info.message

    @property
    def consent_request_hex(self):
        return prepare_cbor_for_ledger(self.request_details).hex()

    @property
    def certificate_hex(self):
        return self.certificate.hex()


class ConsentVerifier:

    def __init__(self, agent=None, language='en', display_mode=DISPLAY_FIELDS,
                        utc_offset_minutes=None, policy=None):
        self.agent = agent or HttpAgent()
        if not self.agent.identity.get_principal().is_anonymous():
            raise ValueError("Consent messages must be fetched with an anonymous agent")

        self.language = language
        self.display_mode = display_mode
        self.utc_offset_minutes = utc_offset_minutes
        self.policy = policy or RetryPolicy()

    @classmethod
    def create(cls, host=None, fetch_root_key=None, **kws):
        return cls(HttpAgent.create(host=host, fetch_root_key=fetch_root_key), **kws)

    @property
    def root_key(self):
        return self.agent.root_key

    def root_key_hex_for_device(self) -> Optional[str]:
        # device knows the mainnet key; only send ours when it's something else
        if self.agent.uses_mainnet_root_key:
            return None
        return self.root_key.hex()

    def build_consent_args(self, method, raw_args):
        return build_consent_args(method, raw_args, language=self.language,
                                    display_mode=self.display_mode,
                                    utc_offset_minutes=self.utc_offset_minutes)

    def call_consent_message(self, canister_id, args) -> SubmitResponse:
        # anonymous update call, no signature needed
        return self.agent.call(canister_id, CONSENT_METHOD, encode_consent_args(args))

    def verify_certificate(self, submit: SubmitResponse, canister_id):
        # Returns (reply, raw_certificate) once we have a certified answer.
        cid = as_principal(canister_id)
        raw = submit.certificate

        if raw is not None:
            cert = Certificate.create(raw, self.root_key, cid)
            st = lookup_request_status(cert, submit.request_id)

            reply = final_reply(st)
            if reply is not None:
                return reply, raw

            logger.debug("Consent call is %s; polling", st.status)

        elif submit.body and 'reject_message' in submit.body:
            # synchronous rejection, no certificate involved
            b = submit.body
            raise CallRejectedError(b['reject_message'], reject_code=b.get('reject_code'),
                                        error_code=b.get('error_code'))

        return self.agent.poll_for_response(cid, submit.request_id, policy=self.policy)

    def decode_consent_message(self, reply: bytes) -> ConsentInfo:
        return decode_consent_response(reply)

    def obtain_consent(self, canister_id, method, arg) -> ConsentArtifacts:
        # full round trip for one pending call
        args = self.build_consent_args(method, arg)
        submit = self.call_consent_message(canister_id, args)
        reply, raw_cert = self.verify_certificate(submit, canister_id)
        info = self.decode_consent_message(reply)

        return ConsentArtifacts(request_details=submit.request_details, args=args,
                                    certificate=raw_cert, info=info)

# EOF
