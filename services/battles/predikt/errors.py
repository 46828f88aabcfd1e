from typing import Optional


class BattleClientError(RuntimeError):
    """
    Base for every error the battle client surfaces to callers.
    None of these should crash the service; the API turns them into
    user-visible, non-fatal responses.
    """


class ValidationError(BattleClientError):
    """Client-side precondition failed. No network call was made."""


class ChainSwitchError(BattleClientError):
    pass


class InvalidStateError(BattleClientError):
    def __init__(self, message: str, *, reason: str = "invalid_state", recoverable: bool = False):
        super().__init__(message)
        self.reason = reason
        self.recoverable = recoverable


class SubmissionError(BattleClientError):
    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class DuplicateSubmissionError(SubmissionError):
    pass


class FetchError(BattleClientError):
    pass


class NotFoundError(BattleClientError):
    pass


# -------------------------------------------------------------------
# Raised by ledger providers; translated by repository / actions.
# -------------------------------------------------------------------

class LedgerError(RuntimeError):
    pass


class LedgerRevert(LedgerError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LedgerNoData(LedgerError):
    """The call returned no data (e.g. nothing deployed at the address yet)."""


class LedgerTransportError(LedgerError):
    pass


class WalletRejected(RuntimeError):
    """Raised by wallet sessions when the user/signer refuses a request."""
