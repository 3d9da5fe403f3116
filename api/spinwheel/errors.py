"""Failure kinds raised by the spin engine.

Every error carries a stable ``kind`` string (used as the ``code`` in API
error bodies) and a ``retryable`` flag telling the caller whether repeating
the same request can succeed.
"""

ALREADY_SPUN = "already_spun"
NOT_WHITELISTED = "not_whitelisted"
NO_ACTIVE_CAMPAIGN = "no_active_campaign"
RATE_LIMITED = "rate_limited"

REASONS = (NO_ACTIVE_CAMPAIGN, NOT_WHITELISTED, ALREADY_SPUN, RATE_LIMITED)


class SpinError(Exception):
    kind = "spin_error"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidIdentity(SpinError):
    kind = "invalid_identity"


class MissingIdentity(SpinError):
    kind = "missing_identity"

    def __init__(self, message: str | None = None):
        super().__init__(message or "Phone or email required")


class NotEligible(SpinError):
    kind = "not_eligible"

    def __init__(self, reason: str, message: str | None = None):
        if reason not in REASONS:
            raise ValueError(f"unknown eligibility reason: {reason!r}")
        super().__init__(message or reason)
        self.reason = reason


class AlreadySpun(NotEligible):
    def __init__(self, message: str | None = None):
        super().__init__(ALREADY_SPUN, message)


class NoPrizesConfigured(SpinError):
    kind = "no_prizes_configured"


class CodeGenerationExhausted(SpinError):
    kind = "code_generation_exhausted"
    retryable = True


class PrizeCapReached(SpinError):
    """A capped prize filled up between the draw and the increment."""
    kind = "prize_cap_reached"
    retryable = True


class AllocationConflict(SpinError):
    kind = "allocation_conflict"
    retryable = True


class AllocationTimeout(AllocationConflict):
    pass


class LedgerUnavailable(SpinError):
    kind = "ledger_unavailable"
