"""
Exception types shared by the stores, the provider client and the controller.

Validation failures are not exceptions: the controller's entry points simply
return False and leave state untouched.
"""


class LuminaError(Exception):
    """Base class for all application errors."""


class CredentialMissing(LuminaError):
    """No usable API key is available, or the provider rejected the one we sent."""

    def __init__(self, message: str = "API_KEY_MISSING"):
        super().__init__(message)


class ProviderError(LuminaError):
    """A transient failure reported by the AI provider. The user may retry."""


class PersistenceError(LuminaError):
    """A profile, counter or credential could not be written to storage."""
