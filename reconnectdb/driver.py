"""DB-API 2.0 driver adapter.

Turns any PEP 249 module into the handle API the session layer wraps:
prepared statements with parameter and column bindings, fetch modes,
attributes and an error mode. The DSN is a SQLAlchemy URL
(``sqlite:///app.db``, ``postgresql+psycopg2://host/db``), which names the
DB-API module to import and how to call its ``connect()``.

Nothing here survives a reconnect; that is the job of
:class:`reconnectdb.Connection`.
"""

import collections.abc
import functools
import types

from sqlalchemy import types as sqltypes
from sqlalchemy.engine import make_url

from .interfaces import ConnectArgs, Variable
from .options import (
    READ_ONLY_ATTRIBUTES, Attr, ErrMode, FetchMode, FetchStyle, ParamType, coerce_param,
)


def _as_style(value):
    if isinstance(value, FetchStyle):
        return value
    if isinstance(value, FetchMode):
        return FetchStyle(mode=value)
    raise TypeError(f"Expected FetchStyle or FetchMode, got {value!r}")


def _param_key(parameter):
    if isinstance(parameter, str):
        return parameter[1:] if parameter.startswith(":") else parameter
    return int(parameter)


def _describe_error(exc):
    if exc is None:
        return ("00000", None, None)
    sqlstate = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None) or "HY000"
    driver_code = getattr(exc, "sqlite_errorcode", None)
    if driver_code is None and exc.args and isinstance(exc.args[0], int):
        # MySQL style (code, message)
        driver_code = exc.args[0]
    return (sqlstate, driver_code, str(exc))


def _guarded(method):
    """Apply the error mode to a driver call.

    Driver errors are re-raised unchanged under ErrMode.EXCEPTION and turned
    into a False return under ErrMode.SILENT. Either way the error is kept
    for error_code()/error_info() until the next guarded call.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            result = method(self, *args, **kwargs)
        except self.error_types as exc:
            self._last_error = exc
            if self._errmode() is ErrMode.EXCEPTION:
                raise
            return False
        self._last_error = None
        return result

    return wrapper


class DbApiStatement:
    def __init__(self, connection, sql, cursor):
        self._connection = connection
        self._dbapi = connection.dbapi
        self.error_types = connection.error_types
        self._sql = sql
        self._cursor = cursor
        self._arraysize = cursor.arraysize
        # parameter key -> (variable or value, ParamType, by_reference)
        self._params = {}
        # column id -> (Variable, ParamType or None)
        self._columns = {}
        self._style = None
        self._last_error = None

    def _errmode(self):
        return self._connection._errmode()

    @property
    def sql(self):
        return self._sql

    def param_key(self, parameter):
        return _param_key(parameter)

    def _column_names(self):
        if self._cursor is None or self._cursor.description is None:
            return None
        return [d[0] for d in self._cursor.description]

    def _current_style(self):
        return self._style or self._connection._attributes[Attr.DEFAULT_FETCH_MODE]

    def _resolve_params(self):
        if not self._params:
            return None

        named = [k for k in self._params if isinstance(k, str)]
        if named and len(named) != len(self._params):
            raise self._dbapi.ProgrammingError("Mixed parameter styles are not supported")

        values = {}
        for key, (bound, param_type, by_ref) in self._params.items():
            value = bound.value if by_ref else bound
            values[key] = coerce_param(value, param_type)

        if named:
            return values

        positions = sorted(values)
        if positions != list(range(1, len(positions) + 1)):
            raise self._dbapi.ProgrammingError(
                f"Positional parameters must be bound as 1..N, got {positions}"
            )
        return [values[p] for p in positions]

    def _assign_bound_columns(self, row):
        if not self._columns:
            return
        names = self._column_names() or []
        for column, (variable, param_type) in self._columns.items():
            if isinstance(column, str):
                if column not in names:
                    continue
                idx = names.index(column)
            else:
                idx = column - 1
            if idx >= len(row):
                continue
            value = row[idx]
            variable.value = value if param_type is None else coerce_param(value, param_type)

    def _next_row(self):
        if self._column_names() is None:
            return None
        row = self._cursor.fetchone()
        if row is None:
            return None
        row = tuple(row)
        self._assign_bound_columns(row)
        return row

    def _shape(self, row, style):
        mode = style.mode
        if mode is FetchMode.TUPLE:
            return row
        if mode is FetchMode.BOUND:
            return True
        if mode is FetchMode.COLUMN:
            if not 0 <= style.column < len(row):
                raise self._dbapi.ProgrammingError(f"Invalid column index {style.column}")
            return row[style.column]

        mapping = dict(zip(self._column_names(), row))
        if mode is FetchMode.DICT:
            return mapping
        if mode is FetchMode.NAMESPACE:
            return types.SimpleNamespace(**mapping)
        obj = style.cls(*style.ctor_args)
        for name, value in mapping.items():
            setattr(obj, name, value)
        return obj

    def _execute(self, params=None):
        if self._cursor is None:
            self._cursor = self._connection.raw.cursor()
            self._cursor.arraysize = self._arraysize

        if params is None:
            params = self._resolve_params()
        elif isinstance(params, collections.abc.Mapping):
            params = {_param_key(k): v for k, v in params.items()}

        if params is None:
            self._cursor.execute(self._sql)
        else:
            self._cursor.execute(self._sql, params)

        self._connection._remember_rowid(self._cursor)
        if self._cursor.description is None:
            self._connection._autocommit()
        return True

    @_guarded
    def bind_column(self, column, variable, param_type=None):
        if not isinstance(variable, Variable):
            raise self._dbapi.ProgrammingError("bind_column() requires a Variable")
        if isinstance(column, str):
            names = self._column_names()
            if names is None:
                raise self._dbapi.ProgrammingError(
                    f"Cannot bind column {column!r} before a result set exists"
                )
            if column not in names:
                raise self._dbapi.ProgrammingError(f"No such column {column!r}")
        elif column < 1:
            raise self._dbapi.ProgrammingError("Column numbers start at 1")
        self._columns[column] = (variable, param_type)
        return True

    @_guarded
    def bind_param(self, parameter, variable, param_type=ParamType.STR):
        if not isinstance(variable, Variable):
            raise self._dbapi.ProgrammingError("bind_param() requires a Variable")
        self._params[_param_key(parameter)] = (variable, param_type, True)
        return True

    @_guarded
    def bind_value(self, parameter, value, param_type=ParamType.STR):
        self._params[_param_key(parameter)] = (value, param_type, False)
        return True

    @_guarded
    def execute(self, params=None):
        return self._execute(params)

    @_guarded
    def fetch(self, style=None):
        row = self._next_row()
        if row is None:
            return None
        return self._shape(row, _as_style(style) if style is not None else self._current_style())

    @_guarded
    def fetch_all(self, style=None):
        style = _as_style(style) if style is not None else self._current_style()
        rows = []
        while True:
            row = self._next_row()
            if row is None:
                break
            rows.append(self._shape(row, style))
        return rows

    @_guarded
    def fetch_column(self, column=0):
        row = self._next_row()
        if row is None:
            return None
        return self._shape(row, FetchStyle(mode=FetchMode.COLUMN, column=column))

    @_guarded
    def fetch_object(self, cls=None, ctor_args=()):
        if cls is None:
            style = FetchStyle(mode=FetchMode.NAMESPACE)
        else:
            style = FetchStyle(mode=FetchMode.CLASS, cls=cls, ctor_args=tuple(ctor_args))
        row = self._next_row()
        if row is None:
            return None
        return self._shape(row, style)

    def column_count(self):
        names = self._column_names()
        return len(names) if names else 0

    def row_count(self):
        if self._cursor is None:
            return -1
        return self._cursor.rowcount

    def get_column_meta(self, column):
        if self._cursor is None or not self._cursor.description:
            return None
        description = self._cursor.description
        if not 0 <= column < len(description):
            return None
        d = tuple(description[column]) + (None,) * 7
        return {
            "name": d[0],
            "type_code": d[1],
            "display_size": d[2],
            "internal_size": d[3],
            "precision": d[4],
            "scale": d[5],
            "null_ok": d[6],
            "index": column,
        }

    @_guarded
    def next_rowset(self):
        nextset = getattr(self._cursor, "nextset", None)
        if nextset is None:
            # sqlite3 has no nextset()
            return False
        return bool(nextset())

    @_guarded
    def close_cursor(self):
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
        return True

    @_guarded
    def get_attribute(self, attribute):
        if attribute is Attr.ARRAYSIZE:
            return self._arraysize
        if attribute is Attr.DEFAULT_FETCH_MODE:
            return self._current_style()
        raise self._dbapi.NotSupportedError(f"Statement attribute {attribute!r} is not supported")

    @_guarded
    def set_attribute(self, attribute, value):
        if attribute is not Attr.ARRAYSIZE:
            raise self._dbapi.NotSupportedError(f"Statement attribute {attribute!r} is not supported")
        self._arraysize = int(value)
        if self._cursor is not None:
            self._cursor.arraysize = self._arraysize
        return True

    @_guarded
    def set_fetch_mode(self, style):
        self._style = _as_style(style)
        return True

    def error_code(self):
        return _describe_error(self._last_error)[0]

    def error_info(self):
        return _describe_error(self._last_error)

    def debug_dump_params(self):
        lines = [f"SQL: [{len(self._sql)}] {self._sql}", f"Params:  {len(self._params)}"]
        for key, (bound, param_type, by_ref) in self._params.items():
            name = f":{key}" if isinstance(key, str) else f"#{key}"
            value = bound.value if by_ref else bound
            mode = "ref" if by_ref else "value"
            lines.append(f"Key: {name} mode={mode} type={param_type.value} value={value!r}")
        return "\n".join(lines)

    def close(self):
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None


class DbApiConnection:
    def __init__(self, raw, dbapi, dialect, attributes=None):
        self.raw = raw
        self.dbapi = dbapi
        self.error_types = (dbapi.Error,)
        self._dialect = dialect
        self._quote_literal = sqltypes.String().literal_processor(dialect=dialect)
        self._attributes = {
            Attr.ERRMODE: ErrMode.EXCEPTION,
            Attr.DEFAULT_FETCH_MODE: FetchStyle(),
            Attr.AUTOCOMMIT: True,
        }
        self._in_transaction = False
        self._last_error = None
        self._last_rowid = None

        for attribute, value in (attributes or {}).items():
            self.set_attribute(attribute, value)

    def _errmode(self):
        return self._attributes[Attr.ERRMODE]

    def _autocommit(self):
        if self._attributes[Attr.AUTOCOMMIT] and not self._in_transaction:
            self.raw.commit()

    def _remember_rowid(self, cursor):
        rowid = getattr(cursor, "lastrowid", None)
        if rowid:
            self._last_rowid = rowid

    def _prepare(self, sql, options=None):
        stmt = DbApiStatement(self, sql, self.raw.cursor())
        if options is not None:
            if options.arraysize is not None:
                stmt._arraysize = options.arraysize
                stmt._cursor.arraysize = options.arraysize
            if options.fetch_style is not None:
                stmt._style = _as_style(options.fetch_style)
        return stmt

    @_guarded
    def prepare(self, sql, options=None):
        return self._prepare(sql, options)

    @_guarded
    def query(self, sql, fetch_style=None):
        stmt = self._prepare(sql)
        if fetch_style is not None:
            stmt._style = _as_style(fetch_style)
        try:
            stmt._execute()
        except self.error_types:
            stmt.close()
            raise
        return stmt

    @_guarded
    def exec(self, sql):
        cursor = self.raw.cursor()
        try:
            cursor.execute(sql)
            count = cursor.rowcount
            self._remember_rowid(cursor)
        finally:
            cursor.close()
        self._autocommit()
        # DDL reports -1 through DB-API
        return max(count, 0)

    @_guarded
    def get_attribute(self, attribute):
        if attribute is Attr.DRIVER_NAME:
            return self._dialect.name
        if attribute in self._attributes:
            return self._attributes[attribute]
        raise self.dbapi.NotSupportedError(f"Connection attribute {attribute!r} is not supported")

    @_guarded
    def set_attribute(self, attribute, value):
        if attribute in READ_ONLY_ATTRIBUTES or attribute not in self._attributes:
            raise self.dbapi.NotSupportedError(f"Connection attribute {attribute!r} cannot be set")
        if attribute is Attr.ERRMODE:
            value = ErrMode(value)
        elif attribute is Attr.DEFAULT_FETCH_MODE:
            value = _as_style(value)
        elif attribute is Attr.AUTOCOMMIT:
            value = bool(value)
        self._attributes[attribute] = value
        return True

    def in_transaction(self):
        return self._in_transaction

    @_guarded
    def begin_transaction(self):
        if self._in_transaction:
            raise self.dbapi.OperationalError("There is already an active transaction")
        self._in_transaction = True
        return True

    @_guarded
    def commit(self):
        if not self._in_transaction:
            raise self.dbapi.OperationalError("There is no active transaction")
        self.raw.commit()
        self._in_transaction = False
        return True

    @_guarded
    def rollback(self):
        if not self._in_transaction:
            raise self.dbapi.OperationalError("There is no active transaction")
        self.raw.rollback()
        self._in_transaction = False
        return True

    def quote(self, value, param_type=ParamType.STR):
        if param_type is ParamType.NULL or value is None:
            return "NULL"
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8", errors="replace")
        return self._quote_literal(str(value))

    @_guarded
    def last_insert_id(self, name=None):
        if name is not None:
            raise self.dbapi.NotSupportedError("Sequence names are not supported by DB-API lastrowid")
        return self._last_rowid

    def error_code(self):
        return _describe_error(self._last_error)[0]

    def error_info(self):
        return _describe_error(self._last_error)

    def close(self):
        self.raw.close()


class DbApiDriver:
    """Opens :class:`DbApiConnection` handles.

    ``dbapi`` overrides the module the URL's dialect would import, for
    drivers SQLAlchemy has no dialect module for under that name.
    """

    def __init__(self, dbapi=None):
        self._dbapi = dbapi

    def __call__(self, args: ConnectArgs) -> DbApiConnection:
        url = make_url(args.dsn)
        overrides = {}
        if args.username is not None:
            overrides["username"] = args.username
        if args.password is not None:
            overrides["password"] = args.password
        if overrides:
            url = url.set(**overrides)

        dialect_cls = url.get_dialect()
        dbapi = self._dbapi or dialect_cls.import_dbapi()
        dialect = dialect_cls(dbapi=dbapi)
        cargs, cparams = dialect.create_connect_args(url)
        cparams = dict(cparams)

        # Attr keys are applied to the handle, anything else goes to connect()
        attributes = {}
        for key, value in (args.options or {}).items():
            if isinstance(key, Attr):
                attributes[key] = value
            else:
                cparams[key] = value

        raw = dbapi.connect(*cargs, **cparams)
        try:
            return DbApiConnection(raw, dbapi, dialect, attributes)
        except BaseException:
            raw.close()
            raise
