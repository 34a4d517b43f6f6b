"""
Transactional execution.

A transaction script is either an ordered sequence of commands or a caller
supplied operation that receives a ``TransactionScope``. Either way one
connection is opened, one transaction begun, and the work commits as a
unit or not at all. The connection is released on every exit path.

By default a failing script is rolled back and reported as ``0`` (or the
caller's ``default`` for operations) instead of raising. Set
``suppress_errors=False`` to have the error re-raised after the rollback.
Failures to open the connection and usage errors always propagate.
"""
import inspect
import logging
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from sqlfacade.data.commands import CommandType, SqlCommand, as_command, make_command
from sqlfacade.data.connection_provider import (
    AsyncConnectionHandle,
    ConnectionHandle,
    ConnectionProvider,
    ConnectionState,
)
from sqlfacade.data.mapper import DEFAULT_SPLIT_ON, MultiMapper, validate_shapes
from sqlfacade.data.result_reader import shape_result
from sqlfacade.data.sql_executor import batch_commands, first_row, result_set_shapes, row_count, scalar_value
from sqlfacade.exceptions import NotSupportedError, ScopeExpiredError

logger = logging.getLogger(__name__)

ASYNC_OPERATION_MESSAGE = (
    "asynchronous operations cannot be awaited by execute_transaction and would commit "
    "before their work completes; use execute_transaction_async instead"
)


def is_async_callable(operation: Callable[..., Any]) -> bool:
    """True for coroutine functions, async generator functions and objects with an async __call__."""
    if inspect.iscoroutinefunction(operation) or inspect.isasyncgenfunction(operation):
        return True
    call = getattr(operation, "__call__", None)
    return inspect.iscoroutinefunction(call) or inspect.isasyncgenfunction(call)


def discard_awaitable(awaitable: Any) -> None:
    """Make sure an awaitable the caller handed back never runs."""
    if inspect.iscoroutine(awaitable):
        awaitable.close()
    elif hasattr(awaitable, "cancel"):
        awaitable.cancel()


def check_work(work: Any) -> None:
    """Reject a lone statement where a script or an operation is expected."""
    if isinstance(work, (str, bytes, SqlCommand)):
        raise TypeError(
            f"A transaction takes a sequence of commands or a callable, not a single {type(work).__name__}; "
            "wrap the statement in a list"
        )


def _multi_map(result: Any, shapes: Sequence[Any], combiner: Callable[..., Any], split_on: str) -> List[Any]:
    if not result.returns_rows:
        return []
    mapper = MultiMapper(shapes, combiner, list(result.keys()), split_on)
    return [mapper(row) for row in result]


class _ScopeBase:
    def __init__(self, handle):
        self._handle = handle
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def expire(self) -> None:
        self._active = False

    def _live_handle(self):
        if not self._active:
            raise ScopeExpiredError("The transaction scope is no longer valid; do not keep it after the operation returns")
        return self._handle

    @property
    def connection(self):
        """The underlying SQLAlchemy connection, valid only while the scope is active."""
        return self._live_handle().connection


class TransactionScope(_ScopeBase):
    """
    The capability an operation receives inside ``execute_transaction``.

    Every statement issued through the scope runs on the transaction's
    connection. The scope stops working once the operation returns.
    """

    def __init__(self, handle: ConnectionHandle):
        super().__init__(handle)

    def _execute(self, command: SqlCommand):
        return self._live_handle().execute(command)

    def execute(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> int:
        return row_count(self._execute(make_command(sql, param, command_type)))

    def query_scalar(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> Any:
        return scalar_value(self._execute(make_command(sql, param, command_type)))

    def query(self, sql: str, shape: Any = dict, param: Any = None,
              command_type: Optional[CommandType] = None) -> List[Any]:
        return shape_result(self._execute(make_command(sql, param, command_type)), shape)

    def query_first(self, sql: str, shape: Any = dict, param: Any = None,
                    command_type: Optional[CommandType] = None) -> Any:
        return first_row(shape)(self._execute(make_command(sql, param, command_type)))

    def query_multi_map(self, sql: str, shapes: Sequence[Any], combiner: Callable[..., Any],
                        param: Any = None, split_on: str = DEFAULT_SPLIT_ON,
                        command_type: Optional[CommandType] = None) -> List[Any]:
        shapes = validate_shapes(shapes)
        return _multi_map(self._execute(make_command(sql, param, command_type)), shapes, combiner, split_on)

    def query_multiple(self, sqls: Union[str, Iterable[str]], *shapes: Any, param: Any = None,
                       command_type: Optional[CommandType] = None):
        commands = batch_commands(sqls, param, command_type)
        set_shapes = result_set_shapes(commands, shapes)
        sets = [shape_result(self._execute(c), s) for c, s in zip(commands, set_shapes)]
        return tuple(sets) if shapes else sets


class AsyncTransactionScope(_ScopeBase):
    """Suspending counterpart of TransactionScope."""

    def __init__(self, handle: AsyncConnectionHandle):
        super().__init__(handle)

    async def _execute(self, command: SqlCommand):
        return await self._live_handle().execute(command)

    async def execute(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> int:
        return row_count(await self._execute(make_command(sql, param, command_type)))

    async def query_scalar(self, sql: str, param: Any = None, command_type: Optional[CommandType] = None) -> Any:
        return scalar_value(await self._execute(make_command(sql, param, command_type)))

    async def query(self, sql: str, shape: Any = dict, param: Any = None,
                    command_type: Optional[CommandType] = None) -> List[Any]:
        return shape_result(await self._execute(make_command(sql, param, command_type)), shape)

    async def query_first(self, sql: str, shape: Any = dict, param: Any = None,
                          command_type: Optional[CommandType] = None) -> Any:
        return first_row(shape)(await self._execute(make_command(sql, param, command_type)))

    async def query_multi_map(self, sql: str, shapes: Sequence[Any], combiner: Callable[..., Any],
                              param: Any = None, split_on: str = DEFAULT_SPLIT_ON,
                              command_type: Optional[CommandType] = None) -> List[Any]:
        shapes = validate_shapes(shapes)
        result = await self._execute(make_command(sql, param, command_type))
        return _multi_map(result, shapes, combiner, split_on)

    async def query_multiple(self, sqls: Union[str, Iterable[str]], *shapes: Any, param: Any = None,
                             command_type: Optional[CommandType] = None):
        commands = batch_commands(sqls, param, command_type)
        set_shapes = result_set_shapes(commands, shapes)
        sets = []
        for command, shape in zip(commands, set_shapes):
            sets.append(shape_result(await self._execute(command), shape))
        return tuple(sets) if shapes else sets


class TransactionExecutor:
    """Runs transaction scripts through a ConnectionProvider."""

    def __init__(self, provider: ConnectionProvider, suppress_errors: bool = True):
        """
        Initialize the executor.

        Args:
            provider: Source of per-call connection handles
            suppress_errors: Return the sentinel (0 or the caller's default)
                after a rollback instead of re-raising the error
        """
        self._provider = provider
        self.suppress_errors = suppress_errors

    def _on_failure(self, error: Exception, sentinel: Any) -> Any:
        logger.error(f"Transaction rolled back: {type(error).__name__}: {error}", exc_info=error)
        if not self.suppress_errors:
            raise error
        return sentinel

    # ------------------------------------------------------------------
    # blocking
    # ------------------------------------------------------------------

    def execute_transaction(self, work: Union[Iterable[Any], Callable[[TransactionScope], Any]],
                            default: Any = None) -> Any:
        """
        Execute a transaction script.

        Args:
            work: Either an ordered iterable of commands (SqlCommand, SQL
                strings or ``(sql, param[, command_type])`` tuples), or a
                callable receiving a TransactionScope
            default: Returned for a failed operation when errors are suppressed

        Returns:
            For commands, the total number of rows affected, or 0 after a
            rollback. For an operation, its return value, or ``default``
            after a rollback.

        Raises:
            NotSupportedError: If the operation is asynchronous
            TypeError: If work is a single statement rather than a script
        """
        check_work(work)
        if callable(work):
            return self._run_operation(work, default)
        return self._run_scripts(work)

    def _run_scripts(self, scripts: Iterable[Any]) -> int:
        commands = [as_command(script) for script in scripts]
        start_time = time.time()

        handle = self._provider.new_handle()
        handle.open()
        try:
            handle.begin()
            count = 0
            for command in commands:
                count += row_count(handle.execute(command))
            handle.commit()
            logger.debug(f"Transaction of {len(commands)} commands committed in {time.time() - start_time:.3f}s")
            return count
        except Exception as e:
            self._rollback(handle)
            return self._on_failure(e, 0)
        finally:
            handle.close()

    def _run_operation(self, operation: Callable[[TransactionScope], Any], default: Any) -> Any:
        if is_async_callable(operation):
            raise NotSupportedError(ASYNC_OPERATION_MESSAGE)

        handle = self._provider.new_handle()
        handle.open()
        scope = TransactionScope(handle)
        try:
            handle.begin()
            result = operation(scope)
            if inspect.isawaitable(result):
                discard_awaitable(result)
                self._rollback(handle)
            else:
                handle.commit()
                logger.debug("Transaction operation committed")
                return result
        except Exception as e:
            self._rollback(handle)
            return self._on_failure(e, default)
        finally:
            scope.expire()
            handle.close()
        # Only reached when the operation handed back an awaitable
        raise NotSupportedError(ASYNC_OPERATION_MESSAGE)

    @staticmethod
    def _rollback(handle: ConnectionHandle) -> None:
        if handle.state is ConnectionState.OPEN:
            handle.rollback()
            logger.debug("Transaction rolled back")

    # ------------------------------------------------------------------
    # suspending
    # ------------------------------------------------------------------

    async def execute_transaction_async(self, work: Union[Iterable[Any], Callable[[AsyncTransactionScope], Any]],
                                        default: Any = None) -> Any:
        """
        Suspending ``execute_transaction``.

        The operation may be a plain or an async callable; whatever awaitable
        it returns is awaited before the commit.
        """
        check_work(work)
        if callable(work):
            return await self._run_operation_async(work, default)
        return await self._run_scripts_async(work)

    async def _run_scripts_async(self, scripts: Iterable[Any]) -> int:
        commands = [as_command(script) for script in scripts]
        start_time = time.time()

        handle = self._provider.new_async_handle()
        await handle.open()
        try:
            await handle.begin()
            count = 0
            for command in commands:
                count += row_count(await handle.execute(command))
            await handle.commit()
            logger.debug(f"Transaction of {len(commands)} commands committed in {time.time() - start_time:.3f}s")
            return count
        except Exception as e:
            await self._rollback_async(handle)
            return self._on_failure(e, 0)
        finally:
            await handle.close()

    async def _run_operation_async(self, operation: Callable[[AsyncTransactionScope], Any], default: Any) -> Any:
        if inspect.isasyncgenfunction(operation):
            raise NotSupportedError("async generator functions cannot be run as a transaction operation")

        handle = self._provider.new_async_handle()
        await handle.open()
        scope = AsyncTransactionScope(handle)
        try:
            await handle.begin()
            result = operation(scope)
            if inspect.isawaitable(result):
                result = await result
            await handle.commit()
            logger.debug("Async transaction operation committed")
            return result
        except Exception as e:
            await self._rollback_async(handle)
            return self._on_failure(e, default)
        finally:
            scope.expire()
            await handle.close()

    @staticmethod
    async def _rollback_async(handle: AsyncConnectionHandle) -> None:
        if handle.state is ConnectionState.OPEN:
            await handle.rollback()
            logger.debug("Async transaction rolled back")
