from typing import Any, Mapping, NamedTuple, Optional, Protocol, Sequence, Tuple, Union

from .options import Attr, FetchStyle, ParamType, PrepareOptions

ParamId = Union[int, str]
ColumnId = Union[int, str]


class Variable:
    """Caller-owned storage for by-reference bindings.

    A parameter bound with bind_param() is read from ``value`` when the
    statement executes. A column bound with bind_column() is written to
    ``value`` each time a row is fetched.
    """

    __slots__ = ("value",)

    def __init__(self, value=None):
        self.value = value

    def __repr__(self):
        return f"Variable({self.value!r})"


class DriverStatement(Protocol):
    # Identifiers the driver treats as one parameter map to the same key.
    def param_key(self, parameter: ParamId) -> Any: ...

    def bind_column(self, column: ColumnId, variable: Variable,
                    param_type: Optional[ParamType] = None) -> bool: ...

    def bind_param(self, parameter: ParamId, variable: Variable,
                   param_type: ParamType = ParamType.STR) -> bool: ...

    def bind_value(self, parameter: ParamId, value: Any,
                   param_type: ParamType = ParamType.STR) -> bool: ...

    def execute(self, params: Optional[Any] = None) -> bool: ...

    def fetch(self, style: Optional[FetchStyle] = None) -> Any: ...

    def fetch_all(self, style: Optional[FetchStyle] = None) -> Any: ...

    def fetch_column(self, column: int = 0) -> Any: ...

    def fetch_object(self, cls: Optional[type] = None, ctor_args: Sequence = ()) -> Any: ...

    def column_count(self) -> int: ...

    def row_count(self) -> int: ...

    def get_column_meta(self, column: int) -> Optional[dict]: ...

    def next_rowset(self) -> bool: ...

    def close_cursor(self) -> bool: ...

    def get_attribute(self, attribute: Attr) -> Any: ...

    def set_attribute(self, attribute: Attr, value: Any) -> bool: ...

    def set_fetch_mode(self, style: FetchStyle) -> bool: ...

    def error_code(self) -> Optional[str]: ...

    def error_info(self) -> Tuple[Optional[str], Any, Optional[str]]: ...

    def debug_dump_params(self) -> str: ...

    def close(self) -> None: ...


class DriverConnection(Protocol):
    # Exception classes the driver raises; the liveness probe and the
    # deferred column binding treat these as "statement failed".
    error_types: Tuple[type, ...]

    def prepare(self, sql: str, options: Optional[PrepareOptions] = None) -> Any: ...

    def query(self, sql: str, fetch_style: Optional[FetchStyle] = None) -> Any: ...

    def exec(self, sql: str) -> Any: ...

    def get_attribute(self, attribute: Attr) -> Any: ...

    def set_attribute(self, attribute: Attr, value: Any) -> bool: ...

    def in_transaction(self) -> bool: ...

    def begin_transaction(self) -> bool: ...

    def commit(self) -> bool: ...

    def rollback(self) -> bool: ...

    def quote(self, value: str, param_type: ParamType = ParamType.STR) -> Any: ...

    def last_insert_id(self, name: Optional[str] = None) -> Any: ...

    def error_code(self) -> Optional[str]: ...

    def error_info(self) -> Tuple[Optional[str], Any, Optional[str]]: ...

    def close(self) -> None: ...


class ConnectArgs(NamedTuple):
    """Construction arguments, kept so the same connection can be rebuilt."""

    dsn: str
    username: Optional[str] = None
    password: Optional[str] = None
    options: Optional[Mapping[Any, Any]] = None
