"""
Exception taxonomy for bet sync and settlement.

Per-leg failures (validation, persistence) are recorded into a batch report
and never abort the batch. Only an upstream fetch failure aborts a sync call.
"""
from typing import List, Optional


class SettlementEngineError(Exception):
    """Base class for errors raised by the sync/settlement engine."""


class LegValidationError(SettlementEngineError):
    """A leg is malformed. Carries every violated constraint, not just the first."""

    def __init__(self, leg_id: str, violations: List[str]):
        self.leg_id = leg_id
        self.violations = list(violations)
        super().__init__(f"Leg {leg_id} failed validation: {'; '.join(self.violations)}")


class PersistenceError(SettlementEngineError):
    """Writing a single leg failed."""

    def __init__(self, leg_id: str, message: str):
        self.leg_id = leg_id
        super().__init__(f"Leg {leg_id} could not be saved: {message}")


class UpstreamFetchError(SettlementEngineError):
    """The aggregator feed could not be fetched. Aborts the whole sync call."""

    def __init__(self, message: str, retryable: bool = True, status_code: Optional[int] = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class SyncInProgressError(SettlementEngineError):
    """A sync for the same user is already running."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"A bet sync is already running for user {user_id}")


class OddsConversionError(ValueError):
    """Raised when an American odds value cannot be converted."""
