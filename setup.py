#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
#
# Internet Computer signing with a Ledger hardware wallet: python support library
#
import re

# To use this command to install and yet be able to edit the code (here). Great for dev:
#
#   pip install --editable .
#
# with cli dependencies
#
#   pip install --editable '.[cli]'
#
# with test dependencies
#
#   pip install --editable '.[test]'
#
#
from setuptools import setup

# read version w/o importing package (needs deps)
with open("icledger/__init__.py", "r") as fh:
    __version__ = re.search(r"^__version__ = '([^']+)'", fh.read(), re.M).group(1)

# these minimum versions are tested, some earlier values would probably work too.
requirements = [
    'cbor2>=5.4.1',
    'coincurve>=15.0.1',
    'ledgercomm[hid]>=1.1.0',
    'requests>=2.26.0',
    'py_ecc>=7.0.0',
]

cli_requirements = [
    'click>=8.0.3',
]

test_requirements = [
    'pytest',
    'hexdump',
] + cli_requirements

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='icledger',
    version=__version__,
    packages=[ 'icledger' ],
    python_requires='>3.7.0',
    install_requires=requirements,
    extras_require={
        'cli': cli_requirements,
        'test': test_requirements,
    },
    author='Coinkite Inc.',
    author_email='support@coinkite.com',
    description="Sign Internet Computer requests with a Ledger hardware wallet, using Python",
    long_description=long_description,
    long_description_content_type="text/markdown",
    entry_points='''
        [console_scripts]
        icledger=icledger.cli:main
    ''',
    classifiers=[
        'Operating System :: POSIX :: Linux',
        'Operating System :: Microsoft :: Windows',
        'Operating System :: MacOS :: MacOS X',
    ],
)

