"""
Exception types raised by the vardb query engine
"""


class VardbError(Exception):
    """Base class for all vardb errors."""


class InvalidArgumentError(VardbError, ValueError):
    """Request rejected before any computation (illegal flag combination, bad bounds)."""


class InternalError(VardbError, RuntimeError):
    """Storage corruption or worker failure; fatal to the request."""


class QueryCancelledError(VardbError):
    """Raised when a query is cancelled while shards are outstanding."""
