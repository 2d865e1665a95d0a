import logging

logger = logging.getLogger(__name__)

# There is no universal no-op statement, so each is tried in turn until one
# is known to work for the database at hand.
PROBE_STATEMENTS = (
    "DO 1",  # MySQL >= 3.23.47
    "SELECT 1",  # MySQL, Microsoft SQL Server, PostgreSQL, SQLite, H2
    "SELECT 1 FROM DUAL",  # Oracle
    "SELECT 1 FROM INFORMATION_SCHEMA.SYSTEM_USERS",  # HSQLDB
    "SELECT 1 FROM SYSIBM.SYSDUMMY1",  # DB2, Apache Derby
    "SELECT COUNT(*) FROM SYSTABLES",  # Informix
)


class LivenessCell:
    """Last known liveness of a connection.

    One cell is shared by a connection and every statement it creates, and
    is always mutated in place so they all observe the same value.
    """

    __slots__ = ("alive", "observed_at")

    def __init__(self):
        self.alive = None
        self.observed_at = None

    def mark(self, alive, at):
        self.alive = alive
        self.observed_at = at

    def clear(self):
        self.alive = None
        self.observed_at = None

    def is_fresh(self, now, duration):
        if duration is None or self.observed_at is None:
            return False
        return self.observed_at > now - duration


class LivenessProbe:
    """Runs a no-op query to check whether a connection handle still answers.

    The index of the first statement that ever succeeded is remembered for
    the lifetime of the probe, and only that statement is run afterwards. A
    cycle in which every statement fails reports the connection as dead but
    does not forget a previously known good statement.
    """

    def __init__(self, statements=PROBE_STATEMENTS):
        self.statements = tuple(statements)
        self.known_valid_index = None

    def _run(self, handle, statement):
        try:
            result = handle.query(statement)
        except handle.error_types:
            return False
        if result:
            result.close()
        return bool(result)

    def probe(self, handle) -> bool:
        if self.known_valid_index is not None:
            return self._run(handle, self.statements[self.known_valid_index])

        for i, statement in enumerate(self.statements):
            if self._run(handle, statement):
                self.known_valid_index = i
                logger.debug("Liveness probe %r works for this connection", statement)
                return True

        logger.warning("No liveness probe statement succeeded (%d tried)", len(self.statements))
        return False
