"""Error taxonomy for account sync and credential handling."""


class SyncError(Exception):
    """Base class for every error raised by the sync subsystem."""


class CryptoError(SyncError):
    """Malformed, forged or undecryptable credential envelope."""


class UpstreamError(SyncError):
    """The scraping backend or OAuth provider failed."""


class UpstreamNotFound(UpstreamError):
    """No data could be obtained after exhausting every input variant."""


class UpstreamTimeout(UpstreamError):
    """The provider did not answer within the bounded timeout.

    Retryable on the next scheduled run, never within the same run.
    """


class CredentialRefreshFailure(SyncError):
    """Refreshing an OAuth credential failed; terminal for the account."""


class PersistenceError(SyncError):
    """Writing canonical records failed; aborts only that account."""


class AccountAlreadyLinked(PersistenceError):
    """The external profile already belongs to another owner's account."""


class AccountNotFound(SyncError):
    """No (non-deleted) social account matches the request."""


class OwnerNotEligible(SyncError):
    """The owner directory refused to let this owner hold a creator account."""
