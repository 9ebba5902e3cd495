class OtpError(Exception):
    """Base class for failures reported by the OTP service."""


class InvalidInput(OtpError, ValueError):
    pass


class InvalidOrExpiredChallenge(OtpError):
    pass


class AccountNotFound(OtpError):
    pass


class DeliveryError(OtpError):
    """The notifier could not hand the code to its channel."""


class ProviderError(OtpError):
    """The identity provider failed to mint a credential or update a secret."""


class StoreError(OtpError):
    """The challenge store could not be read or written."""
