"""
Command descriptors for the data access layer.

A command is one SQL statement plus its parameters and a discriminator
telling whether the text is ad-hoc SQL, the name of a stored procedure or
the name of a table to read directly.
"""
import dataclasses
import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

Params = Union[Dict[str, Any], List[Dict[str, Any]]]


class CommandType(enum.Enum):
    """How the text of a command is interpreted."""

    TEXT = "text"
    STORED_PROCEDURE = "stored_procedure"
    TABLE_DIRECT = "table_direct"


def _param_set(param: Any) -> Dict[str, Any]:
    """Convert a single parameter object into a name -> value dict."""
    if isinstance(param, Mapping):
        return dict(param)
    if dataclasses.is_dataclass(param) and not isinstance(param, type):
        return dataclasses.asdict(param)
    if hasattr(param, "_asdict"):
        # namedtuple
        return dict(param._asdict())
    if hasattr(param, "__dict__"):
        return {k: v for k, v in vars(param).items() if not k.startswith("_")}
    raise TypeError(f"Unsupported parameter object of type {type(param).__name__}")


def normalize_params(param: Any) -> Params:
    """
    Normalize caller supplied parameters for SQLAlchemy.

    Args:
        param: None, a mapping, a dataclass instance, a namedtuple, a plain
            object, or a list/tuple of any of those for batched execution

    Returns:
        A dict for a single parameter set, or a list of dicts for a batch
    """
    if param is None:
        return {}
    if isinstance(param, (list, tuple)) and not hasattr(param, "_asdict"):
        return [_param_set(p) for p in param]
    return _param_set(param)


@dataclass(frozen=True)
class SqlCommand:
    """Immutable descriptor of one statement."""

    sql: str
    param: Any = None
    command_type: CommandType = CommandType.TEXT

    def __post_init__(self):
        if not isinstance(self.sql, str) or not self.sql.strip():
            raise ValueError("SqlCommand requires non-empty SQL text")
        if self.command_type is None:
            object.__setattr__(self, "command_type", CommandType.TEXT)

    @property
    def params(self) -> Params:
        return normalize_params(self.param)

    def render(self, dialect_name: str = "default") -> str:
        """
        Render the statement text for the given dialect.

        Stored procedures become ``CALL name(:a, :b)`` (``EXEC name @a=:a``
        on SQL Server); table-direct commands become ``SELECT * FROM name``.
        """
        if self.command_type is CommandType.TEXT:
            return self.sql

        name = self.sql.strip()
        if self.command_type is CommandType.TABLE_DIRECT:
            return f"SELECT * FROM {name}"

        params = self.params
        first = params[0] if isinstance(params, list) and params else params
        names = list(first) if isinstance(first, dict) else []
        if dialect_name == "mssql":
            args = ", ".join(f"@{n}=:{n}" for n in names)
            return f"EXEC {name} {args}".rstrip()
        args = ", ".join(f":{n}" for n in names)
        return f"CALL {name}({args})"

    def to_statement(self, dialect_name: str = "default") -> TextClause:
        return text(self.render(dialect_name))


def as_command(item: Any) -> SqlCommand:
    """
    Coerce a transaction script entry into a SqlCommand.

    Accepts a SqlCommand, a bare SQL string, or a ``(sql, param)`` /
    ``(sql, param, command_type)`` tuple.
    """
    if isinstance(item, SqlCommand):
        return item
    if isinstance(item, str):
        return SqlCommand(item)
    if isinstance(item, tuple) and 1 <= len(item) <= 3:
        return SqlCommand(*item)
    raise TypeError(f"Cannot build a SqlCommand from {type(item).__name__}")


def make_command(sql: str, param: Any = None,
                 command_type: Optional[CommandType] = None) -> SqlCommand:
    return SqlCommand(sql, param, command_type or CommandType.TEXT)
