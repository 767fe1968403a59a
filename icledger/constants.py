#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# System constants.
#

# BIP-44 coin type for the Internet Computer
ICP_COIN_TYPE = 223

# keys are picked by the last (non-hardened) component of this path
DERIVE_PATH_TEMPLATE = "m/44'/223'/0'/0/{index}"
DEFAULT_DERIVE_PATH = DERIVE_PATH_TEMPLATE.format(index=0)

# range allowed for that last component (inclusive)
MIN_PATH_INDEX = 0
MAX_PATH_INDEX = 255

# the ICP app always wants exactly this many path components
DERIVE_PATH_DEPTH = 5

# APDU class byte used by the Internet Computer app
ICP_CLA = 0x11

# instructions understood by the app
INS_GET_VERSION         = 0x00
INS_GET_ADDR_SECP256K1  = 0x01
INS_SIGN_SECP256K1      = 0x02
INS_SAVE_CONSENT        = 0x03
INS_SAVE_CANISTER_CALL  = 0x04
INS_SAVE_ROOT_KEY       = 0x05
INS_SIGN_WITH_CONTEXT   = 0x06
INS_GET_TOKENS          = 0x07

# P1 values for chunked payloads
PAYLOAD_INIT = 0x00
PAYLOAD_ADD  = 0x01
PAYLOAD_LAST = 0x02

# P1 values for address request
P1_ONLY_RETRIEVE   = 0x00
P1_SHOW_ADDRESS    = 0x01

# max payload bytes in a single APDU
CHUNK_SIZE = 250

# Status words from the app
SW_OKAY                 = 0x9000
SW_EXECUTION_ERROR      = 0x6400
SW_WRONG_LENGTH         = 0x6700
SW_EMPTY_BUFFER         = 0x6982
SW_DEVICE_LOCKED        = 0x5515
SW_DATA_INVALID         = 0x6984
SW_CONDITIONS_NOT_MET   = 0x6985
SW_COMMAND_NOT_ALLOWED  = 0x6986
SW_BAD_KEY_HANDLE       = 0x6A80
SW_INS_NOT_SUPPORTED    = 0x6D00
SW_CLA_NOT_SUPPORTED    = 0x6E00
SW_APP_NOT_OPEN         = 0x6E01
SW_WRONG_APP            = 0x6511
SW_UNKNOWN              = 0xFFFF

# human text for some of those
SW_MESSAGES = {
    SW_EXECUTION_ERROR: "Execution error",
    SW_WRONG_LENGTH: "Wrong length",
    SW_EMPTY_BUFFER: "Empty buffer",
    SW_DEVICE_LOCKED: "Device is locked",
    SW_DATA_INVALID: "Data is invalid",
    SW_CONDITIONS_NOT_MET: "Conditions not satisfied",
    SW_COMMAND_NOT_ALLOWED: "Transaction rejected",
    SW_BAD_KEY_HANDLE: "Bad key handle",
    SW_INS_NOT_SUPPORTED: "Instruction not supported",
    SW_CLA_NOT_SUPPORTED: "App does not seem to be open",
    SW_APP_NOT_OPEN: "App does not seem to be open",
    SW_WRONG_APP: "Wrong app is open",
    SW_UNKNOWN: "Unknown error",
}

# all signatures made by the device: r||s
SIGNATURE_LENGTH = 64

# sizes of fields in the get-address response
SECP256K1_PUBKEY_LENGTH = 65
PRINCIPAL_RAW_LENGTH = 29
PRE_SIGN_HASH_LENGTH = 32

# USB vendor ID for Ledger devices
LEDGER_VENDOR_ID = 0x2C97

# TCP APDU proxy (Speculos, or our emulator)
DEFAULT_PROXY_PORT = 9999

# DER prefix for an uncompressed secp256k1 public key (SubjectPublicKeyInfo)
SECP256K1_DER_PREFIX = bytes.fromhex('3056301006072a8648ce3d020106052b8104000a034200')

# DER prefix for a BLS12-381 (G2) public key, as used for IC root/subnet keys
BLS_DER_PREFIX = bytes.fromhex('308182301d060d2b0601040182dc7c0503010201060c2b0601040182dc7c05030201036100')
BLS_KEY_LENGTH = 96
BLS_SIGNATURE_LENGTH = 48

# Internet Computer mainnet root key (DER)
IC_ROOT_KEY = bytes.fromhex(
    '308182301d060d2b0601040182dc7c0503010201060c2b0601040182dc7c05030201036100'
    '814c0e6ec71fab583b08bd81373c255c3c371b2e84863c98a4f1e08b74235d14fb5d9c0c'
    'd546d9685f913a0c0b2cc5341583bf4b4392e467db96d65b9bb4cb717112f8472e0d5a4d'
    '14505ffd7484b01291091c5f87b98883463f98091a0baaae')

# default network and hosts which count as mainnet (no root key fetch)
DEFAULT_NETWORK = 'https://icp-api.io'
MAINNET_HOSTS = { 'ic0.app', 'icp0.io', 'icp-api.io' }

# ingress expiry we put on call requests before signing (device enforces a limit)
CALL_EXPIRY_MS = 300_000

# certificates older than this are refused
CERTIFICATE_MAX_AGE_MINUTES = 5

# self-describing CBOR tag, required on the bytes shown to the device
CBOR_SELF_DESCRIBE_TAG = 55799

# ICRC-21 consent message method
CONSENT_METHOD = 'icrc21_canister_call_consent_message'

# first app version with full Candid parsing (published January 2023)
CANDID_PARSER_VERSION = '2.2.1'

# EOF
