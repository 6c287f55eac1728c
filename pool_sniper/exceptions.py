"""
Custom exception classes for the pool sniper.

Provides typed exceptions for the failure categories of the position
lifecycle. None of them is fatal to the process except
ConfigurationException raised at startup.
"""


class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class DataUnavailable(BotException):
    """Raised when price or mint data cannot be fetched. Retried next cycle."""
    pass


class RiskRejected(BotException):
    """Raised when a candidate fails the rug heuristic. Never retried."""

    def __init__(self, message: str, verdict=None, **context):
        super().__init__(message, **context)
        self.verdict = verdict


class SwapFailed(BotException):
    """Raised when a quote or swap execution fails."""
    pass


class MalformedEvent(BotException):
    """Raised when a pool payload is missing fields or has an unknown shape."""
    pass


class StateException(BotException):
    """Raised when a position registry invariant would be violated."""
    pass


class ConfigurationException(BotException):
    """Raised when configuration is invalid."""
    pass
