"""
Custom exceptions for the sqlfacade data access layer.

Driver and SQL failures are not wrapped: they surface as the
``sqlalchemy.exc`` exceptions raised by the engine.
"""


class DataAccessError(Exception):
    """Base class for all errors raised by the facade itself."""


class ConnectionStateError(DataAccessError):
    """Raised when a connection handle is used in a state that does not allow it."""


class ScopeExpiredError(ConnectionStateError):
    """Raised when a transaction scope is used after its operation has returned."""


class MappingError(DataAccessError):
    """Raised when a result row cannot be shaped into the requested type."""


class NotSupportedError(DataAccessError):
    """Raised when an operation is supplied in a form the executor cannot run safely."""
