"""
Error taxonomy for the grid trader.

Only InvalidConfiguration is fatal. Every other error is recoverable and
degrades to "skip this tick" inside the engine and scheduler loops.
"""

from __future__ import annotations


class GridTraderError(Exception):
    """Base class for all grid trader errors."""
    pass


class InvalidConfiguration(GridTraderError):
    """Raised when grid or runtime configuration is malformed."""
    pass


class PriceUnavailable(GridTraderError):
    """Raised when the price source cannot produce a sane price."""
    pass


class SignalUnavailable(GridTraderError):
    """Raised when the support/resistance source fails or returns bad data."""
    pass


class InsufficientBalance(GridTraderError):
    """Raised when a wallet cannot cover the requested debit."""

    def __init__(self, asset: str, have, need) -> None:
        self.asset = asset
        self.have = have
        self.need = need
        super().__init__(f"Insufficient {asset}: have {have}, need {need}")


class ExecutionFailed(GridTraderError):
    """Raised when a swap could not be executed."""
    pass


class SlippageExceeded(ExecutionFailed):
    """Raised when the executed amount falls below the minimum accepted."""
    pass


class PersistenceError(GridTraderError):
    """Raised by persistence internals; never propagated into trading loops."""
    pass
