"""
sqlfacade: run SQL through short-lived connections with typed results and
transactional grouping of statements.
"""

from sqlfacade.data import (
    CommandType,
    ConnectionState,
    DataFacade,
    MultiResultReader,
    SqlCommand,
    TransactionScope,
)
from sqlfacade.exceptions import (
    ConnectionStateError,
    DataAccessError,
    MappingError,
    NotSupportedError,
    ScopeExpiredError,
)

__version__ = "0.1.0"

__all__ = [
    "CommandType",
    "ConnectionState",
    "ConnectionStateError",
    "DataAccessError",
    "DataFacade",
    "MappingError",
    "MultiResultReader",
    "NotSupportedError",
    "ScopeExpiredError",
    "SqlCommand",
    "TransactionScope",
]
