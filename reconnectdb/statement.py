import logging

from .options import ParamType

logger = logging.getLogger(__name__)


class Statement:
    """Statement that survives a disconnect and reconnect of its connection.

    The driver statement lives in a slot shared with the connection. When
    the connection disconnects it empties the slot; the next call on this
    statement asks the connection for a new handle and restores everything
    set on the old one, so callers never see the difference.

    Parameter bindings are recorded under the driver's ``param_key()``, so
    ``":id"`` and ``"id"`` count as one parameter when the driver says so.

    Some drivers cannot bind a column before a result set exists. Column
    bindings that fail while restoring are retried after the next
    successful :meth:`execute`.
    """

    def __init__(self, connection, liveness, prepared, creation_args, slot):
        self._connection = connection
        self._liveness = liveness
        self._prepared = prepared
        self._creation_args = creation_args
        self._slot = slot

        self._attributes = {}
        self._bound_columns = {}
        self._post_execute_columns = {}  # ordered set
        self._bound_params = {}
        self._bound_values = {}
        self._fetch_style = None

    @property
    def _handle(self):
        return self._slot.handle if self._slot is not None else None

    def _attach(self, slot):
        self._slot = slot

    def _reconstruct(self):
        self._slot = None
        if not self._connection.reconstruct_statement(self, self._prepared, self._creation_args):
            return False

        handle = self._handle
        for attribute, value in self._attributes.items():
            handle.set_attribute(attribute, value)

        self._post_execute_columns = {}
        for column, args in self._bound_columns.items():
            try:
                bound = handle.bind_column(*args)
            except handle.error_types:
                bound = False
            if not bound:
                logger.debug("Deferring column binding %r until next execute", column)
                self._post_execute_columns[column] = None

        for args in self._bound_params.values():
            handle.bind_param(*args)

        for args in self._bound_values.values():
            handle.bind_value(*args)

        if self._fetch_style is not None:
            handle.set_fetch_mode(self._fetch_style)

        return True

    def _ensure_handle(self):
        if self._handle is not None:
            return True
        return self._reconstruct()

    @property
    def prepared(self):
        return self._prepared

    @property
    def sql(self):
        return self._creation_args[0]

    @property
    def error_types(self):
        handle = self._handle
        return handle.error_types if handle is not None else ()

    def close(self):
        """Release the driver statement now rather than at disconnect."""
        slot, self._slot = self._slot, None
        if slot is None or slot.handle is None:
            return
        self._connection.forget_statement(slot)
        handle, slot.handle = slot.handle, None
        handle.close()

    def __del__(self):
        try:
            self.close()
        except AttributeError:
            # __init__ did not finish
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self):
        return self

    def __next__(self):
        row = self.fetch()
        if row is None or row is False:
            raise StopIteration
        return row

    def set_attribute(self, attribute, value):
        if not self._ensure_handle():
            return False
        result = self._handle.set_attribute(attribute, value)
        if result:
            self._attributes[attribute] = value
        return result

    def bind_column(self, column, variable, param_type=None):
        if not self._ensure_handle():
            return False
        args = (column, variable, param_type)
        result = self._handle.bind_column(*args)
        if result:
            self._post_execute_columns.pop(column, None)
            self._bound_columns[column] = args
        return result

    def bind_param(self, parameter, variable, param_type=ParamType.STR):
        if not self._ensure_handle():
            return False
        args = (parameter, variable, param_type)
        result = self._handle.bind_param(*args)
        if result:
            key = self._handle.param_key(parameter)
            self._bound_values.pop(key, None)
            self._bound_params[key] = args
        return result

    def bind_value(self, parameter, value, param_type=ParamType.STR):
        if not self._ensure_handle():
            return False
        args = (parameter, value, param_type)
        result = self._handle.bind_value(*args)
        if result:
            key = self._handle.param_key(parameter)
            self._bound_params.pop(key, None)
            self._bound_values[key] = args
        return result

    def set_fetch_mode(self, style):
        if not self._ensure_handle():
            return False
        result = self._handle.set_fetch_mode(style)
        if result:
            self._fetch_style = style
        return result

    def execute(self, params=None):
        if not self._ensure_handle():
            return False

        handle = self._handle
        executed_on = self._connection.clock()
        result = handle.execute(params)
        if not result:
            return result

        self._liveness.mark(True, executed_on)

        for column in list(self._post_execute_columns):
            try:
                bound = handle.bind_column(*self._bound_columns[column])
            except handle.error_types:
                bound = False
            if bound:
                del self._post_execute_columns[column]
            else:
                logger.debug("Column binding %r still deferred", column)
        return result

    def fetch(self, style=None):
        if not self._ensure_handle():
            return False
        return self._handle.fetch(style)

    def fetch_all(self, style=None):
        if not self._ensure_handle():
            return False
        return self._handle.fetch_all(style)

    def fetch_column(self, column=0):
        if not self._ensure_handle():
            return False
        return self._handle.fetch_column(column)

    def fetch_object(self, cls=None, ctor_args=()):
        if not self._ensure_handle():
            return False
        return self._handle.fetch_object(cls, ctor_args)

    def column_count(self):
        if not self._ensure_handle():
            return False
        return self._handle.column_count()

    def row_count(self):
        if not self._ensure_handle():
            return False
        return self._handle.row_count()

    def get_column_meta(self, column):
        if not self._ensure_handle():
            return False
        return self._handle.get_column_meta(column)

    def next_rowset(self):
        if not self._ensure_handle():
            return False
        return self._handle.next_rowset()

    def close_cursor(self):
        if not self._ensure_handle():
            return False
        return self._handle.close_cursor()

    def get_attribute(self, attribute):
        if not self._ensure_handle():
            return False
        return self._handle.get_attribute(attribute)

    def error_code(self):
        if not self._ensure_handle():
            return False
        return self._handle.error_code()

    def error_info(self):
        if not self._ensure_handle():
            return False
        return self._handle.error_info()

    def debug_dump_params(self):
        if not self._ensure_handle():
            return False
        return self._handle.debug_dump_params()
