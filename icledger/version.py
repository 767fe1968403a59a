#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Which app versions support which features.
#
import re
from .constants import CANDID_PARSER_VERSION
from .exceptions import VersionTooOldError
from .identity import LedgerIdentity

# we compare major.minor.patch only
VERSION_PARTS = 3

def parse_version(ver) -> tuple:
    # "2.1" => (2,1,0); "1.0.0-beta.1" => (1,0,0); "" => (0,0,0)
    # - anything after the leading digits of a component is ignored
    parts = str(ver).strip().split('.')[0:VERSION_PARTS]
    rv = []
    for p in parts:
        m = re.match(r'\d*', p.strip())
        rv.append(int(m.group(0)) if m.group(0) else 0)

    rv += [0] * (VERSION_PARTS - len(rv))
    return tuple(rv)

def compare_versions(a, b) -> int:
    # -1, 0, 1 like old cmp()
    pa, pb = parse_version(a), parse_version(b)
    return (pa > pb) - (pa < pb)

def is_smaller_than(current, min_version) -> bool:
    return compare_versions(current, min_version) < 0

def is_current_version_smaller_than(identity, min_version) -> bool:
    # False for identities not on a device
    if not isinstance(identity, LedgerIdentity):
        return False
    return is_smaller_than(str(identity.get_version()), min_version)

def assert_min_version(identity, min_version):
    # Raise VersionTooOldError if device's app is older than min_version.
    # - ignored when identity isn't a LedgerIdentity
    if not isinstance(identity, LedgerIdentity):
        return

    current = str(identity.get_version())
    if is_smaller_than(current, min_version):
        raise VersionTooOldError(current, min_version)

def assert_candid_parser(identity):
    # most canister calls need an app that can parse arbitrary Candid
    assert_min_version(identity, CANDID_PARSER_VERSION)

# EOF
