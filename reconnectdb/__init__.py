"""Session layer over a DB-API connection.

Adds lazy connect, explicit disconnect/reconnect and liveness checks to a
database connection, and keeps prepared statements usable across a
reconnect::

    import reconnectdb

    conn = reconnectdb.connect("sqlite:///app.db", auto_reconnect=True)
    stmt = conn.prepare("SELECT name FROM users WHERE id = :id")
    stmt.bind_value(":id", 1)

    conn.disconnect()
    stmt.execute()  # reconnects, re-prepares and rebinds :id
"""

import os

from .connection import Connection, HandleSlot
from .driver import DbApiConnection, DbApiDriver, DbApiStatement
from .errors import Error, InterfaceError, NotConnectedError
from .interfaces import ConnectArgs, DriverConnection, DriverStatement, Variable
from .liveness import PROBE_STATEMENTS, LivenessCell, LivenessProbe
from .options import Attr, ErrMode, FetchMode, FetchStyle, ParamType, PrepareOptions
from .statement import Statement

__all__ = [
    "Attr",
    "ConnectArgs",
    "Connection",
    "DbApiConnection",
    "DbApiDriver",
    "DbApiStatement",
    "DriverConnection",
    "DriverStatement",
    "ErrMode",
    "Error",
    "FetchMode",
    "FetchStyle",
    "HandleSlot",
    "InterfaceError",
    "LivenessCell",
    "LivenessProbe",
    "NotConnectedError",
    "PROBE_STATEMENTS",
    "ParamType",
    "PrepareOptions",
    "Statement",
    "Variable",
    "connect",
]

apilevel = "2.0"
threadsafety = 1  # Threads may share the module, but not connections
paramstyle = "named"  # :name, or 1-based positions with bind_param()/bind_value()


def _env_flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"", "0", "false", "no", "off"}


def connect(dsn, username=None, password=None, options=None, **kwargs):
    """Create a :class:`Connection`.

    ``lazy_connect`` and ``auto_reconnect`` default to the
    RECONNECTDB_LAZY_CONNECT and RECONNECTDB_AUTO_RECONNECT environment
    variables when not passed.
    """
    kwargs.setdefault("lazy_connect", _env_flag("RECONNECTDB_LAZY_CONNECT"))
    kwargs.setdefault("auto_reconnect", _env_flag("RECONNECTDB_AUTO_RECONNECT"))
    return Connection(dsn, username, password, options, **kwargs)
