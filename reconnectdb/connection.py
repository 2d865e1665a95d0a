import logging
import time

from .driver import DbApiDriver
from .errors import NotConnectedError
from .interfaces import ConnectArgs
from .liveness import LivenessCell, LivenessProbe
from .options import ParamType, PrepareOptions
from .statement import Statement

logger = logging.getLogger(__name__)


class HandleSlot:
    """Holds one statement handle, shared by a Statement and the registry.

    Emptying the slot on disconnect is how the statement finds out its
    handle is gone.
    """

    __slots__ = ("handle",)

    def __init__(self, handle):
        self.handle = handle


class Connection:
    """Database connection with lazy connect, disconnect and reconnect.

    The driver handle lives inside the wrapper, so disconnecting closes it
    along with every statement handle created from it. Statements created
    through :meth:`prepare` and :meth:`query` keep working after a
    reconnect: each rebuilds its handle on next use and replays its
    attributes, bindings and fetch mode.

    Lazy connect delays the first connection until something needs it.
    Auto reconnect connects again on demand after :meth:`disconnect`; it does
    not detect or refresh a connection that died on its own.
    """

    def __init__(self, dsn, username=None, password=None, options=None,
                 lazy_connect=False, auto_reconnect=False, driver=None,
                 clock=time.monotonic):
        self._args = ConnectArgs(dsn, username, password, dict(options) if options else None)
        self._auto_reconnect = auto_reconnect
        self._driver = driver or DbApiDriver()
        self._clock = clock
        self._ever_connected = False
        self._liveness = LivenessCell()
        self._probe = LivenessProbe()

        self._handle = None
        self._attributes = {}
        self._statements = []

        if not lazy_connect:
            self.connect()

    @property
    def auto_reconnect(self):
        return self._auto_reconnect

    def is_connected(self):
        """Whether a connection was made and not disconnected since.

        This says nothing about whether the server still answers; see
        :meth:`is_alive`.
        """
        return self._handle is not None

    def connect(self):
        if self.is_connected():
            return

        connected_on = self._clock()
        handle = self._driver(self._args)
        self._handle = handle
        self._ever_connected = True
        self._liveness.mark(True, connected_on)

        for attribute, value in self._attributes.items():
            handle.set_attribute(attribute, value)
        logger.debug("Connected to %s", self._args.dsn)

    def disconnect(self):
        if not self.is_connected():
            return

        self._liveness.clear()

        statements, self._statements = self._statements, []
        for slot in statements:
            handle, slot.handle = slot.handle, None
            if handle is not None:
                handle.close()

        handle, self._handle = self._handle, None
        handle.close()
        logger.debug("Disconnected from %s (%d statement handles released)",
                     self._args.dsn, len(statements))

    def reconnect(self):
        self.disconnect()
        self.connect()

    def require_connection(self):
        """Connect if needed and allowed, else raise NotConnectedError.

        A connection that was never made is always allowed to connect, so a
        lazy connection works without auto reconnect. Only connecting again
        after an explicit disconnect depends on auto reconnect.
        """
        if self.is_connected():
            return
        if not self._ever_connected or self._auto_reconnect:
            self.connect()
        else:
            raise NotConnectedError("Disconnected")

    def is_alive(self, cache_duration=None):
        """Check whether the connection answers a no-op query.

        If the status was observed less than ``cache_duration`` seconds ago,
        the last known status is returned without querying. Without a cache
        duration the connection is tested every time.
        """
        self.require_connection()

        if self._liveness.is_fresh(self._clock(), cache_duration):
            return self._liveness.alive

        probed_on = self._clock()
        alive = self._probe.probe(self._handle)
        self._liveness.mark(alive, probed_on)
        return alive

    def _register(self, handle):
        slot = HandleSlot(handle)
        self._statements.append(slot)
        return slot

    def reconstruct_statement(self, statement, prepared, creation_args):
        """Give ``statement`` a new handle created from ``creation_args``.

        Called by a Statement whose handle was released by a disconnect.
        Statements made by :meth:`query` are prepared again, not executed,
        so a rebuild never runs their SQL a second time. Returns False if the
        driver reported failure without raising.
        """
        self.require_connection()

        sql, extra = creation_args
        if prepared:
            handle = self._handle.prepare(sql, extra)
        else:
            handle = self._handle.prepare(sql)
            if handle and extra is not None:
                handle.set_fetch_mode(extra)

        if not handle:
            logger.debug("Could not reconstruct statement %r", sql)
            return False

        statement._attach(self._register(handle))
        logger.debug("Reconstructed statement %r", sql)
        return True

    def forget_statement(self, slot):
        """Drop one handle from the teardown registry."""
        for i, registered in enumerate(self._statements):
            if registered is slot:
                del self._statements[i]
                return

    def error_code(self):
        self.require_connection()
        return self._handle.error_code()

    def error_info(self):
        self.require_connection()
        return self._handle.error_info()

    def get_attribute(self, attribute):
        self.require_connection()
        return self._handle.get_attribute(attribute)

    def set_attribute(self, attribute, value):
        self.require_connection()
        result = self._handle.set_attribute(attribute, value)
        if result:
            self._attributes[attribute] = value
        return result

    def in_transaction(self):
        self.require_connection()
        return self._handle.in_transaction()

    def begin_transaction(self):
        self.require_connection()
        return self._handle.begin_transaction()

    def commit(self):
        self.require_connection()
        return self._handle.commit()

    def rollback(self):
        self.require_connection()
        return self._handle.rollback()

    def quote(self, value, param_type=ParamType.STR):
        self.require_connection()
        return self._handle.quote(value, param_type)

    def prepare(self, sql, options: PrepareOptions = None):
        self.require_connection()
        handle = self._handle.prepare(sql, options)
        if not handle:
            return False
        return Statement(self, self._liveness, True, (sql, options), self._register(handle))

    def query(self, sql, fetch_style=None):
        self.require_connection()
        executed_on = self._clock()
        handle = self._handle.query(sql, fetch_style)
        if not handle:
            return False
        self._liveness.mark(True, executed_on)
        return Statement(self, self._liveness, False, (sql, fetch_style), self._register(handle))

    def exec(self, sql):
        self.require_connection()
        executed_on = self._clock()
        result = self._handle.exec(sql)
        if result is not False:
            self._liveness.mark(True, executed_on)
        return result

    def last_insert_id(self, name=None):
        self.require_connection()
        return self._handle.last_insert_id(name)

    @property
    def clock(self):
        return self._clock

    @property
    def error_types(self):
        if self._handle is None:
            return ()
        return self._handle.error_types

    def close(self):
        self.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
