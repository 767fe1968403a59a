#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#

__version__ = '0.9.0'

__all__ = [ 'proto', 'exceptions', 'transport', 'constants', 'utils', 'identity',
            'consent', 'certificate', 'agent', 'candid', 'icrc21', 'version',
            'keys', 'principal', 'request' ]

# find and open a device
from icledger.transport import connect

# identities, for use by agents
from icledger.identity import LedgerIdentity, AnonymousIdentity

# optional consent-verified signing
from icledger.consent import ConsentVerifier
