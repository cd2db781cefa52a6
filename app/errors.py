"""
Error hierarchy for the mail synchronization engine.

The orchestrator decides per class whether a failure skips one message,
fails one account run, or flags the account for user attention.
"""


class MailSyncError(Exception):
    """Base class for all sync engine errors."""
    pass


class AccountNotFoundError(MailSyncError):
    """Raised when the account to sync does not exist."""
    pass


class DecryptionError(MailSyncError):
    """Raised when stored credentials cannot be decrypted."""
    pass


class AuthenticationError(MailSyncError):
    """Raised when the remote source rejects the account credentials."""
    pass


class TransientRemoteError(MailSyncError):
    """Raised on timeouts, refused connections and temporary server errors."""
    pass


class AccountNotReadyError(TransientRemoteError):
    """Raised while the provider is still initializing a linked account."""
    pass


class InitializationTimeoutError(TransientRemoteError):
    """Raised when the provider account never became ready."""

    def __init__(self, attempts: int):
        super().__init__(f"Account failed to initialize after {attempts} attempts")
        self.attempts = attempts


class MalformedMessageError(MailSyncError):
    """Raised when a raw message cannot be normalized."""
    pass


class AddressResolutionError(MailSyncError):
    """Raised when a sender/recipient address cannot be stored."""
    pass


class CursorCommitError(MailSyncError):
    """Raised when the new cursor could not be persisted."""
    pass
