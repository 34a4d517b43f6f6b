"""
Forward-only readers over the result sets of a multi-statement query.

A reader owns the connection handle its statements ran on. The handle is
released when the last result set has been read or when the reader is
closed, whichever comes first. Closing commits whatever the statements
wrote, unless the reader is left through an exception.
"""
import logging
from typing import Any, Iterator, List, Sequence, Tuple

from sqlfacade.data.connection_provider import AsyncConnectionHandle, ConnectionHandle, ConnectionState
from sqlfacade.data.mapper import map_rows
from sqlfacade.exceptions import ConnectionStateError

logger = logging.getLogger(__name__)


def shape_result(result: Any, shape: Any) -> List[Any]:
    """Materialize one result set; statements without rows give an empty list."""
    if not result.returns_rows:
        return []
    try:
        return list(map_rows(result, shape))
    finally:
        result.close()


class _ReaderBase:
    def __init__(self, handle, results: Sequence[Any]):
        self._handle = handle
        self._results = list(results)
        self._index = 0

    @property
    def result_count(self) -> int:
        return len(self._results)

    @property
    def is_consumed(self) -> bool:
        return self._index >= len(self._results)

    @property
    def is_closed(self) -> bool:
        return self._handle.state is ConnectionState.CLOSED

    def _next_result(self) -> Any:
        if self.is_closed:
            raise ConnectionStateError("The reader has been closed")
        if self.is_consumed:
            raise ConnectionStateError("All result sets have already been read")
        result = self._results[self._index]
        self._results[self._index] = None
        self._index += 1
        return result

    def _discard_unread(self) -> None:
        for result in self._results[self._index:]:
            if result is not None:
                result.close()
        self._index = len(self._results)


class MultiResultReader(_ReaderBase):
    """Blocking reader; use it as a context manager or call close()."""

    def __init__(self, handle: ConnectionHandle, results: Sequence[Any]):
        super().__init__(handle, results)

    def read(self, shape: Any = dict) -> List[Any]:
        """Shape and return the next result set."""
        rows = shape_result(self._next_result(), shape)
        if self.is_consumed:
            self.close()
        return rows

    def read_first(self, shape: Any = dict) -> Any:
        rows = self.read(shape)
        return rows[0] if rows else None

    def read_all(self, *shapes: Any) -> Tuple[List[Any], ...]:
        """Read one result set per shape, in order."""
        return tuple(self.read(shape) for shape in shapes)

    def __iter__(self) -> Iterator[List[Any]]:
        while not self.is_consumed and not self.is_closed:
            yield self.read()

    def close(self, commit: bool = True) -> None:
        """
        Release the connection.

        Args:
            commit: Commit the work done by the statements before releasing;
                when False the pending transaction is rolled back
        """
        if self.is_closed:
            return
        try:
            self._discard_unread()
            if commit:
                self._handle.commit()
        finally:
            self._handle.close()
            logger.debug(f"Multi result reader closed (commit={commit})")

    def __enter__(self) -> "MultiResultReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(commit=exc_type is None)


class AsyncMultiResultReader(_ReaderBase):
    """Suspending reader; use it with ``async with`` or await close()."""

    def __init__(self, handle: AsyncConnectionHandle, results: Sequence[Any]):
        super().__init__(handle, results)

    async def read(self, shape: Any = dict) -> List[Any]:
        rows = shape_result(self._next_result(), shape)
        if self.is_consumed:
            await self.close()
        return rows

    async def read_first(self, shape: Any = dict) -> Any:
        rows = await self.read(shape)
        return rows[0] if rows else None

    async def read_all(self, *shapes: Any) -> Tuple[List[Any], ...]:
        return tuple([await self.read(shape) for shape in shapes])

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while not self.is_consumed and not self.is_closed:
            yield await self.read()

    async def close(self, commit: bool = True) -> None:
        if self.is_closed:
            return
        try:
            self._discard_unread()
            if commit:
                await self._handle.commit()
        finally:
            await self._handle.close()
            logger.debug(f"Async multi result reader closed (commit={commit})")

    async def __aenter__(self) -> "AsyncMultiResultReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close(commit=exc_type is None)
