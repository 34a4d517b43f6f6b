"""
Single-statement execution against short-lived connections.

Every public method provisions exactly one connection handle, runs one
round trip and releases the handle before returning or raising. The only
exceptions are the multi result set readers, which hand their handle to
the caller, and unbuffered queries, which provision their handle when
iteration starts and release it when iteration ends.
"""
import itertools
import logging
import time
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, List, Optional, Sequence, Union

import pandas as pd

from sqlfacade.data.commands import CommandType, SqlCommand, make_command
from sqlfacade.data.connection_provider import ConnectionProvider
from sqlfacade.data.mapper import (
    DEFAULT_SPLIT_ON,
    map_rows,
    map_rows_async,
    multi_map_rows,
    multi_map_rows_async,
    validate_shapes,
)
from sqlfacade.data.result_reader import AsyncMultiResultReader, MultiResultReader, shape_result

logger = logging.getLogger(__name__)

MAX_RESULT_SETS = 10

Shaper = Callable[[Any], Iterable[Any]]


def _truncate(sql: str) -> str:
    return sql[:100] + "..." if len(sql) > 100 else sql


def batch_commands(sqls: Union[str, Iterable[str]], param: Any = None,
                   command_type: Optional[CommandType] = None) -> List[SqlCommand]:
    """Build one command per statement of a multi-statement query."""
    if isinstance(sqls, str):
        sqls = [sqls]
    commands = [make_command(sql, param, command_type) for sql in sqls]
    if not commands:
        raise ValueError("At least one SQL statement is required")
    return commands


def result_set_shapes(commands: Sequence[SqlCommand], shapes: Sequence[Any]) -> Sequence[Any]:
    """One shape per statement; untyped sets are read as dict rows."""
    if not shapes:
        return (dict,) * len(commands)
    if len(shapes) != len(commands):
        raise ValueError(f"Got {len(shapes)} shapes for {len(commands)} statements")
    if len(shapes) > MAX_RESULT_SETS:
        raise ValueError(f"At most {MAX_RESULT_SETS} typed result sets are supported")
    return shapes


def first_row(shape: Any) -> Callable[[Any], Any]:
    def first(result):
        if not result.returns_rows:
            return None
        return next(itertools.islice(map_rows(result, shape), 1), None)
    return first


def row_count(result: Any) -> int:
    return result.rowcount


def scalar_value(result: Any) -> Any:
    if not result.returns_rows:
        return None
    return result.scalar()


class SqlExecutor:
    """
    Runs single commands through a ConnectionProvider.

    Shapes accepted by the query methods are described in
    ``sqlfacade.data.mapper``.
    """

    def __init__(self, provider: ConnectionProvider):
        self._provider = provider

    # ------------------------------------------------------------------
    # blocking
    # ------------------------------------------------------------------

    def _run(self, command: SqlCommand, handler: Callable[[Any], Any]) -> Any:
        start_time = time.time()
        with self._provider.new_handle() as handle:
            result = handle.execute(command)
            value = handler(result)
            handle.commit()
        logger.debug(f"Statement executed in {time.time() - start_time:.3f}s: {_truncate(command.sql)}")
        return value

    def _stream(self, command: SqlCommand, shaper: Shaper) -> Iterator[Any]:
        with self._provider.new_handle() as handle:
            result = handle.stream(command)
            if result.returns_rows:
                yield from shaper(result)
            handle.commit()

    def _rows(self, command: SqlCommand, shaper: Shaper, buffered: bool) -> Union[List[Any], Iterator[Any]]:
        if not buffered:
            return self._stream(command, shaper)
        return self._run(command, lambda result: list(shaper(result)) if result.returns_rows else [])

    def execute(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> int:
        """
        Execute a non-query command.

        Args:
            sql: The SQL to execute (or procedure/table name, see command_type)
            param: Parameters for the command; a list of parameter sets runs
                the command once per set
            command_type: Whether sql is text, a stored procedure or a table

        Returns:
            The number of rows affected
        """
        return self._run(make_command(sql, param, command_type), row_count)

    def query_scalar(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> Any:
        """
        Execute a command that selects a single value.

        Returns:
            The first column of the first row, or None when there are no rows
        """
        return self._run(make_command(sql, param, command_type), scalar_value)

    def query(self, sql: str, shape: Any = dict, param: Any = None,
              command_type: Optional[CommandType] = None,
              buffered: bool = True) -> Union[List[Any], Iterator[Any]]:
        """
        Execute a query and shape every row.

        Args:
            sql: The SQL to execute
            shape: Row shape; a primitive type binds from the first column, a
                class binds by case-insensitive column name
            param: Parameters for the query
            command_type: Whether sql is text, a stored procedure or a table
            buffered: When False, return a generator that opens its connection
                on first iteration and releases it once exhausted or closed

        Returns:
            List of shaped rows, or a generator of them when not buffered
        """
        return self._rows(make_command(sql, param, command_type),
                          lambda result: map_rows(result, shape), buffered)

    def query_first(self, sql: str, shape: Any = dict, param: Any = None,
                    command_type: Optional[CommandType] = None) -> Any:
        """Return the first shaped row, or None when there are no rows."""
        return self._run(make_command(sql, param, command_type), first_row(shape))

    def query_multi_map(self, sql: str, shapes: Sequence[Any], combiner: Callable[..., Any],
                        param: Any = None, split_on: str = DEFAULT_SPLIT_ON,
                        command_type: Optional[CommandType] = None,
                        buffered: bool = True) -> Union[List[Any], Iterator[Any]]:
        """
        Execute a joined query and combine several shapes per row.

        Args:
            sql: The SQL to execute
            shapes: Ordered shapes, 2 to 10 of them, one per column group
            combiner: Called with one shaped object per group; its return
                value is the row result
            param: Parameters for the query
            split_on: Column(s) where each group after the first starts
            command_type: Whether sql is text, a stored procedure or a table
            buffered: When False, return a lazily connecting generator

        Returns:
            List of combined rows, or a generator of them when not buffered
        """
        shapes = validate_shapes(shapes)
        return self._rows(make_command(sql, param, command_type),
                          lambda result: multi_map_rows(result, shapes, combiner, split_on),
                          buffered)

    def query_multiple(self, sqls: Union[str, Iterable[str]], *shapes: Any, param: Any = None,
                       command_type: Optional[CommandType] = None):
        """
        Execute several statements and return one materialized result set each.

        Without shapes every set is a list of dict rows and a list of sets is
        returned. With shapes, one shape per statement, a tuple of lists is
        returned.
        """
        commands = batch_commands(sqls, param, command_type)
        set_shapes = result_set_shapes(commands, shapes)

        start_time = time.time()
        with self._provider.new_handle() as handle:
            sets = [shape_result(handle.execute(command), shape)
                    for command, shape in zip(commands, set_shapes)]
            handle.commit()
        logger.debug(f"{len(commands)} result sets read in {time.time() - start_time:.3f}s")
        return tuple(sets) if shapes else sets

    def query_multiple_reader(self, sqls: Union[str, Iterable[str]], param: Any = None,
                              command_type: Optional[CommandType] = None) -> MultiResultReader:
        """
        Execute several statements and hand back an unread reader.

        The reader owns the connection: read every set or close the reader
        (ideally in a ``with`` block), otherwise the connection stays checked out.
        """
        commands = batch_commands(sqls, param, command_type)
        handle = self._provider.new_handle()
        try:
            handle.open()
            results = [handle.execute(command) for command in commands]
        except BaseException:
            handle.close()
            raise
        return MultiResultReader(handle, results)

    def query_dataframe(self, sql: str, param: Any = None,
                        command_type: Optional[CommandType] = None) -> pd.DataFrame:
        """Execute a query and return the result as a pandas DataFrame."""
        command = make_command(sql, param, command_type)
        with self._provider.new_handle() as handle:
            return pd.read_sql(command.to_statement(handle.dialect_name),
                               handle.connection, params=command.params)

    def validate_connection(self) -> bool:
        """
        Validate the database connection.

        Returns:
            True if connection is valid, False otherwise
        """
        try:
            self.query_scalar("SELECT 1")
            return True
        except Exception as e:
            logger.error(f"Connection validation failed: {e}")
            return False

    # ------------------------------------------------------------------
    # suspending
    # ------------------------------------------------------------------

    async def _run_async(self, command: SqlCommand, handler: Callable[[Any], Any]) -> Any:
        start_time = time.time()
        async with self._provider.new_async_handle() as handle:
            result = await handle.execute(command)
            value = handler(result)
            await handle.commit()
        logger.debug(f"Statement executed in {time.time() - start_time:.3f}s: {_truncate(command.sql)}")
        return value

    async def _stream_async(self, command: SqlCommand, shaper: Callable[[Any], AsyncIterator[Any]]):
        async with self._provider.new_async_handle() as handle:
            result = await handle.stream(command)
            async for item in shaper(result):
                yield item
            await handle.commit()

    async def _rows_async(self, command: SqlCommand, shaper: Shaper,
                          async_shaper: Callable[[Any], AsyncIterator[Any]], buffered: bool):
        if not buffered:
            return self._stream_async(command, async_shaper)
        return await self._run_async(
            command, lambda result: list(shaper(result)) if result.returns_rows else []
        )

    async def execute_async(self, sql: str, param: Any = None,
                            command_type: Optional[CommandType] = None) -> int:
        return await self._run_async(make_command(sql, param, command_type), row_count)

    async def query_scalar_async(self, sql: str, param: Any = None,
                                 command_type: Optional[CommandType] = None) -> Any:
        return await self._run_async(make_command(sql, param, command_type), scalar_value)

    async def query_async(self, sql: str, shape: Any = dict, param: Any = None,
                          command_type: Optional[CommandType] = None, buffered: bool = True):
        """
        Suspending ``query``. With ``buffered=False`` the awaited value is an
        async generator to consume with ``async for``.
        """
        return await self._rows_async(
            make_command(sql, param, command_type),
            lambda result: map_rows(result, shape),
            lambda result: map_rows_async(result, shape),
            buffered,
        )

    async def query_first_async(self, sql: str, shape: Any = dict, param: Any = None,
                                command_type: Optional[CommandType] = None) -> Any:
        return await self._run_async(make_command(sql, param, command_type), first_row(shape))

    async def query_multi_map_async(self, sql: str, shapes: Sequence[Any], combiner: Callable[..., Any],
                                    param: Any = None, split_on: str = DEFAULT_SPLIT_ON,
                                    command_type: Optional[CommandType] = None,
                                    buffered: bool = True):
        shapes = validate_shapes(shapes)
        return await self._rows_async(
            make_command(sql, param, command_type),
            lambda result: multi_map_rows(result, shapes, combiner, split_on),
            lambda result: multi_map_rows_async(result, shapes, combiner, split_on),
            buffered,
        )

    async def query_multiple_async(self, sqls: Union[str, Iterable[str]], *shapes: Any,
                                   param: Any = None, command_type: Optional[CommandType] = None):
        commands = batch_commands(sqls, param, command_type)
        set_shapes = result_set_shapes(commands, shapes)

        async with self._provider.new_async_handle() as handle:
            sets = []
            for command, shape in zip(commands, set_shapes):
                sets.append(shape_result(await handle.execute(command), shape))
            await handle.commit()
        return tuple(sets) if shapes else sets

    async def query_multiple_reader_async(self, sqls: Union[str, Iterable[str]], param: Any = None,
                                          command_type: Optional[CommandType] = None) -> AsyncMultiResultReader:
        commands = batch_commands(sqls, param, command_type)
        handle = self._provider.new_async_handle()
        try:
            await handle.open()
            results = [await handle.execute(command) for command in commands]
        except BaseException:
            await handle.close()
            raise
        return AsyncMultiResultReader(handle, results)

    async def validate_connection_async(self) -> bool:
        try:
            await self.query_scalar_async("SELECT 1")
            return True
        except Exception as e:
            logger.error(f"Async connection validation failed: {e}")
            return False
