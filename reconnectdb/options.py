import dataclasses
import enum
from typing import Any, Optional


class Attr(enum.Enum):
    """Attributes understood by the DB-API driver adapter."""

    # Connection attributes
    ERRMODE = "errmode"
    DEFAULT_FETCH_MODE = "default_fetch_mode"
    AUTOCOMMIT = "autocommit"
    DRIVER_NAME = "driver_name"  # read-only
    # Statement attributes
    ARRAYSIZE = "arraysize"


READ_ONLY_ATTRIBUTES = frozenset({Attr.DRIVER_NAME})


class ErrMode(enum.Enum):
    SILENT = "silent"        # return False, keep the error for error_info()
    EXCEPTION = "exception"  # raise the driver's exception unchanged


class FetchMode(enum.Enum):
    TUPLE = "tuple"
    DICT = "dict"
    NAMESPACE = "namespace"
    CLASS = "class"
    COLUMN = "column"
    BOUND = "bound"


class ParamType(enum.Enum):
    STR = "str"
    INT = "int"
    BOOL = "bool"
    NULL = "null"
    LOB = "lob"


@dataclasses.dataclass(frozen=True)
class FetchStyle:
    """How rows are shaped by fetch(), fetch_all() and set_fetch_mode().

    ``column`` is used by FetchMode.COLUMN, ``cls`` and ``ctor_args`` by
    FetchMode.CLASS.
    """

    mode: FetchMode = FetchMode.TUPLE
    column: int = 0
    cls: Optional[type] = None
    ctor_args: tuple = ()

    def __post_init__(self):
        if self.mode is FetchMode.CLASS and self.cls is None:
            raise ValueError("FetchMode.CLASS requires cls")


@dataclasses.dataclass(frozen=True)
class PrepareOptions:
    """Options applied to a statement when it is prepared."""

    arraysize: Optional[int] = None
    fetch_style: Optional[FetchStyle] = None


def coerce_param(value: Any, param_type: ParamType) -> Any:
    if value is None or param_type is ParamType.NULL:
        return None
    if param_type is ParamType.INT:
        return int(value)
    if param_type is ParamType.BOOL:
        return bool(value)
    if param_type is ParamType.LOB:
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Binary values are passed through as-is for STR
        return bytes(value)
    if isinstance(value, (bool, int, float)):
        # Numbers keep their type so the driver can bind them natively
        return value
    return str(value)
