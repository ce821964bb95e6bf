"""Error taxonomy shared by every governance component."""


class BeaconError(Exception):
    """Base error."""
    pass


class ValidationError(BeaconError):
    """A required field is missing or malformed. Raised before any side effect."""
    pass


class NotFoundError(BeaconError):
    """Unknown participant, user, consent, session or incident."""
    pass


class AuthorizationDenied(BeaconError):
    """
    Access was refused.

    The message is always generic so callers cannot tell *why* access
    was denied; the specific reason lives only in the audit trail.
    """

    GENERIC_MESSAGE = "Access denied: insufficient permissions for the requested data"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.GENERIC_MESSAGE)


class StoreError(BeaconError):
    """The persistent store failed."""
    pass


class DependencyError(BeaconError):
    """An external collaborator (AI service) failed."""
    pass


class EncryptionError(BeaconError):
    """Encrypt/decrypt failed."""
    pass
