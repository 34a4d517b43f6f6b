"""
Row shaping for query results.

A *shape* tells the mapper what to turn each row into:

- ``dict`` (or None): a column name -> value dict
- ``tuple``: the raw row values
- a primitive type (int, str, Decimal, datetime, UUID, an Enum, ...):
  the value of the first column, converted to that type
- any other class: an instance whose members are bound from the columns by
  case-insensitive name, ignoring column order and unmatched columns

Multi-mapping splits each row into consecutive column groups, one per
shape, and hands the shaped parts to a combiner.
"""
import dataclasses
import datetime
import enum
import functools
import inspect
import uuid
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlfacade.exceptions import MappingError

PRIMITIVE_TYPES = (
    int,
    float,
    str,
    bool,
    bytes,
    bytearray,
    Decimal,
    datetime.datetime,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    uuid.UUID,
)

DEFAULT_SPLIT_ON = "id"
MAX_MULTI_MAP_SHAPES = 10

RowMapper = Callable[[Sequence[Any]], Any]


def is_primitive(shape: Any) -> bool:
    return isinstance(shape, type) and (
        shape in PRIMITIVE_TYPES or issubclass(shape, enum.Enum)
    )


def convert_value(value: Any, shape: type) -> Any:
    """Convert a single column value to a primitive shape."""
    if value is None or (isinstance(value, shape) and not (shape is int and isinstance(value, bool))):
        return value
    try:
        if shape in (datetime.datetime, datetime.date, datetime.time) and isinstance(value, str):
            return shape.fromisoformat(value)
        if shape is uuid.UUID:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        if shape is Decimal and isinstance(value, float):
            return Decimal(str(value))
        return shape(value)
    except (TypeError, ValueError) as e:
        raise MappingError(
            f"Cannot convert value {value!r} of type {type(value).__name__} to {shape.__name__}"
        ) from e


@functools.lru_cache(maxsize=None)
def _binder(shape: type) -> Tuple[str, Optional[Dict[str, str]], Tuple[str, ...]]:
    """
    Work out how instances of a composite shape are built.

    Returns:
        (kind, names, required) where kind is "init" (construct with
        keyword arguments) or "attrs" (construct empty, then set
        attributes), names maps lower-cased member names to member names
        (None means any column name is set as-is) and required lists the
        constructor arguments that have no default
    """
    if dataclasses.is_dataclass(shape):
        fields = [f for f in dataclasses.fields(shape) if f.init]
        required = tuple(
            f.name for f in fields
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        )
        return "init", {f.name.lower(): f.name for f in fields}, required

    if issubclass(shape, tuple) and hasattr(shape, "_fields"):
        defaults = getattr(shape, "_field_defaults", {})
        required = tuple(f for f in shape._fields if f not in defaults)
        return "init", {f.lower(): f for f in shape._fields}, required

    try:
        params = list(inspect.signature(shape).parameters.values())
    except (TypeError, ValueError):
        params = []
    named = [
        p for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
    ]
    if named:
        required = tuple(p.name for p in named if p.default is inspect.Parameter.empty)
        return "init", {p.name.lower(): p.name for p in named}, required

    annotations: Dict[str, str] = {}
    for klass in reversed(shape.__mro__):
        for name in getattr(klass, "__annotations__", {}):
            if not name.startswith("_"):
                annotations[name.lower()] = name
    return "attrs", annotations or None, ()


def _composite_mapper(shape: type, columns: Sequence[str]) -> RowMapper:
    kind, names, required = _binder(shape)

    if names is None:
        targets = list(columns)
    else:
        targets = []
        seen = set()
        for column in columns:
            attr = names.get(column.lower())
            if attr in seen:
                attr = None
            if attr is not None:
                seen.add(attr)
            targets.append(attr)

    if kind == "init":
        def build(values: Sequence[Any]) -> Any:
            kwargs = {attr: value for attr, value in zip(targets, values) if attr is not None}
            for attr in required:
                kwargs.setdefault(attr, None)
            try:
                return shape(**kwargs)
            except TypeError as e:
                raise MappingError(f"Cannot construct {shape.__name__} from row: {e}") from e
        return build

    def assign(values: Sequence[Any]) -> Any:
        try:
            obj = shape()
        except TypeError as e:
            raise MappingError(f"Cannot construct {shape.__name__} without arguments: {e}") from e
        for attr, value in zip(targets, values):
            if attr is not None:
                setattr(obj, attr, value)
        return obj
    return assign


def row_mapper(shape: Any, columns: Sequence[str]) -> RowMapper:
    """
    Build a function that shapes one row of the given columns.

    Args:
        shape: Target shape (see module docstring)
        columns: Column names of the rows that will be mapped

    Returns:
        Callable taking the row values and returning the shaped value
    """
    columns = list(columns)
    if shape is None or shape is dict:
        return lambda values: dict(zip(columns, values))
    if shape is tuple:
        return tuple
    if is_primitive(shape):
        if not columns:
            raise MappingError(f"Cannot map {shape.__name__} from a result with no columns")
        return lambda values: convert_value(values[0], shape)
    if isinstance(shape, type):
        return _composite_mapper(shape, columns)
    raise MappingError(f"Unsupported row shape: {shape!r}")


def map_rows(result: Any, shape: Any) -> Iterator[Any]:
    """Lazily shape every row of a SQLAlchemy result."""
    mapper = row_mapper(shape, list(result.keys()))
    for row in result:
        yield mapper(tuple(row))


async def map_rows_async(result: Any, shape: Any) -> AsyncIterator[Any]:
    """Lazily shape every row of a streaming SQLAlchemy AsyncResult."""
    mapper = row_mapper(shape, list(result.keys()))
    async for row in result:
        yield mapper(tuple(row))


def split_points(columns: Sequence[str], count: int, split_on: str = DEFAULT_SPLIT_ON) -> List[int]:
    """
    Find where each shape's columns start in a joined row.

    The split columns are searched for from the right, so the last shape
    starts at the last matching column and earlier boundaries are searched
    to the left of it. ``split_on`` is either one column name used for
    every boundary or a comma separated list with one name per boundary.

    Returns:
        Start index of each of the ``count`` column groups
    """
    names = [s.strip() for s in (split_on or DEFAULT_SPLIT_ON).split(",") if s.strip()]
    if len(names) not in (1, count - 1):
        raise ValueError(
            f"split_on must name one column or {count - 1} columns, got {len(names)}"
        )

    starts = []
    pos = len(columns)
    for boundary in range(count - 1, 0, -1):
        name = names[boundary - 1] if len(names) > 1 else names[0]
        for i in range(pos - 1, 0, -1):
            if columns[i].lower() == name.lower():
                break
        else:
            raise MappingError(
                f"Multi-map error: split_on column '{name}' was not found; "
                "ensure split_on names the first column of each shape after the first, in order"
            )
        pos = i
        starts.append(i)
    starts.append(0)
    starts.reverse()
    return starts


class MultiMapper:
    """Shapes joined rows into several objects and combines them."""

    def __init__(self, shapes: Sequence[Any], combiner: Callable[..., Any],
                 columns: Sequence[str], split_on: str = DEFAULT_SPLIT_ON):
        columns = list(columns)
        starts = split_points(columns, len(shapes), split_on)
        self._bounds = list(zip(starts, starts[1:] + [len(columns)]))
        self._mappers = [
            row_mapper(shape, columns[a:b]) for shape, (a, b) in zip(shapes, self._bounds)
        ]
        self._combiner = combiner

    def __call__(self, row: Sequence[Any]) -> Any:
        values = tuple(row)
        parts = []
        for idx, (mapper, (a, b)) in enumerate(zip(self._mappers, self._bounds)):
            group = values[a:b]
            # A trailing shape with nothing but NULLs (outer join miss) maps to None
            if idx > 0 and all(v is None for v in group):
                parts.append(None)
            else:
                parts.append(mapper(group))
        return self._combiner(*parts)


def validate_shapes(shapes: Iterable[Any]) -> List[Any]:
    shapes = list(shapes)
    if not 2 <= len(shapes) <= MAX_MULTI_MAP_SHAPES:
        raise ValueError(
            f"Multi-mapping needs between 2 and {MAX_MULTI_MAP_SHAPES} shapes, got {len(shapes)}"
        )
    return shapes


def multi_map_rows(result: Any, shapes: Sequence[Any], combiner: Callable[..., Any],
                   split_on: str = DEFAULT_SPLIT_ON) -> Iterator[Any]:
    mapper = MultiMapper(shapes, combiner, list(result.keys()), split_on)
    for row in result:
        yield mapper(row)


async def multi_map_rows_async(result: Any, shapes: Sequence[Any], combiner: Callable[..., Any],
                               split_on: str = DEFAULT_SPLIT_ON) -> AsyncIterator[Any]:
    mapper = MultiMapper(shapes, combiner, list(result.keys()), split_on)
    async for row in result:
        yield mapper(row)
