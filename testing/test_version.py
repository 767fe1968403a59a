#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
import pytest
from icledger.constants import CANDID_PARSER_VERSION
from icledger.exceptions import VersionTooOldError
from icledger.identity import AnonymousIdentity
from icledger.version import *

@pytest.mark.parametrize('ver, expect', [
    ('1.0.0', (1, 0, 0)),
    ('2.1', (2, 1, 0)),
    ('3', (3, 0, 0)),
    ('', (0, 0, 0)),
    ('1.0.0-beta.1', (1, 0, 0)),
    ('2.4.9.7', (2, 4, 9)),
    ('v1.2.3', (0, 2, 3)),
    (' 10.20.30 ', (10, 20, 30)),
    ('1.2rc3.4', (1, 2, 4)),
])
def test_parse(ver, expect):
    assert parse_version(ver) == expect

def test_compare():
    assert compare_versions('1.0.0', '1.0.0') == 0
    assert compare_versions('2.2', '2.2.0') == 0
    assert compare_versions('2.10.0', '2.9.9') == 1
    assert compare_versions('0.9.9', '1.0.0') == -1

    assert is_smaller_than('0.9.9', '1.0.0')
    assert not is_smaller_than('1.0.0-beta.1', '1.0.0')
    assert not is_smaller_than('1.0.0', '1.0.0')
    assert not is_smaller_than('1.0.1', '1.0.0')

@pytest.mark.parametrize('cur, need', [('0.0.1', '9.9.9'), ('junk', '1.0'), ('', '')])
def test_anonymous_never_fails(cur, need):
    # no device, nothing to check
    assert assert_min_version(AnonymousIdentity(), need) is None
    assert not is_current_version_smaller_than(AnonymousIdentity(), need)

def test_min_version(ident, app):
    app.version = (2, 1, 9)
    with pytest.raises(VersionTooOldError) as ee:
        assert_min_version(ident, '2.2.0')
    assert ee.value.current == '2.1.9'
    assert ee.value.min_version == '2.2.0'
    assert '2.2.0' in str(ee.value)

    # failed before anything else was asked of the device
    assert app.sign_count == 0
    assert app.open_sessions == 0

    assert is_current_version_smaller_than(ident, '2.2.0')
    with pytest.raises(VersionTooOldError):
        assert_candid_parser(ident)

    app.version = (2, 2, 0)
    assert_min_version(ident, '2.2.0')
    assert not is_current_version_smaller_than(ident, '2.2.0')

    app.version = tuple(int(i) for i in CANDID_PARSER_VERSION.split('.'))
    assert_candid_parser(ident)

# EOF
