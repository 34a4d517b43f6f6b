"""
Data access layer for sqlfacade.

This package provides:
- Per-operation connection provisioning
- Single-statement execution with typed result shaping
- Multi result set readers
- Transactional execution of command scripts and operations
"""

from sqlfacade.data.commands import CommandType, SqlCommand
from sqlfacade.data.connection_provider import (
    AsyncConnectionHandle,
    ConnectionHandle,
    ConnectionProvider,
    ConnectionState,
)
from sqlfacade.data.facade import DataFacade
from sqlfacade.data.result_reader import AsyncMultiResultReader, MultiResultReader
from sqlfacade.data.sql_executor import SqlExecutor
from sqlfacade.data.transaction_executor import (
    AsyncTransactionScope,
    TransactionExecutor,
    TransactionScope,
)

__all__ = [
    'AsyncConnectionHandle',
    'AsyncMultiResultReader',
    'AsyncTransactionScope',
    'CommandType',
    'ConnectionHandle',
    'ConnectionProvider',
    'ConnectionState',
    'DataFacade',
    'MultiResultReader',
    'SqlCommand',
    'SqlExecutor',
    'TransactionExecutor',
    'TransactionScope',
]
