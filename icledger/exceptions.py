#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Exceptions
#

class LedgerError(RuntimeError):
    # base class for everything we raise on purpose
    pass

#
# Connection problems: device not there, or not usable right now.
#
class DeviceConnectionError(LedgerError):
    pass

class NoDeviceFound(DeviceConnectionError):
    def __init__(self, msg=None):
        super().__init__(msg or "No Ledger device found. Is the wallet connected and unlocked?")

class UnsupportedEnvironment(DeviceConnectionError):
    def __init__(self, msg=None):
        super().__init__(msg or "Cannot talk to a Ledger device here: no USB HID support "
                                "(install 'hidapi') and no APDU proxy configured "
                                "(set LEDGER_PROXY_ADDRESS).")

class DeviceBusyError(DeviceConnectionError):
    def __init__(self, msg=None):
        super().__init__(msg or "Cannot connect to Ledger device. Please close all other wallet "
                                "applications (e.g. Ledger Live) and try again.")

class DeviceLockedError(DeviceConnectionError):
    def __init__(self, msg=None):
        super().__init__(msg or "Ledger device is locked. Unlock it and try again.")

class WrongAppError(DeviceConnectionError):
    def __init__(self, msg=None):
        super().__init__(msg or "Please open the Internet Computer app on your wallet and try again.")

#
# Device said something unexpected.
#
class DeviceProtocolError(LedgerError):
    def __init__(self, msg, code, raw_msg):
        self.code = code
        self.raw_msg = raw_msg
        super().__init__(msg)

class StaleFirmwareError(DeviceProtocolError):
    pass

class UserRejectedError(DeviceProtocolError):
    pass

class DeviceSubstitutionError(LedgerError):
    def __init__(self, msg=None):
        super().__init__(msg or "Found unexpected public key. Are you sure you're using the right wallet?")

class SignatureLengthError(LedgerError):
    def __init__(self, length):
        self.length = length
        super().__init__(f"Signature must be 64 bytes long (is {length})")

class IdentityCreationError(LedgerError):
    pass

class VersionTooOldError(LedgerError):
    def __init__(self, current, min_version):
        self.current = current
        self.min_version = min_version
        super().__init__(f"Ledger app version {current} is too old. "
                         f"Please update to {min_version} or newer.")

#
# Network side: consent messages and certificates
#
class CallRejectedError(LedgerError):
    def __init__(self, reject_message, reject_code=None, error_code=None):
        self.reject_code = reject_code
        self.reject_message = reject_message
        self.error_code = error_code
        super().__init__(f"Call rejected: {reject_message}")

class CertificateVerificationError(LedgerError):
    pass

class DecodeError(LedgerError):
    pass

class PollingTimeoutError(LedgerError):
    def __init__(self, attempts, elapsed):
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"No certified response after {attempts} attempts ({elapsed:.1f}s)")

# EOF
