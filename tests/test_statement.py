import gc

import pytest

from reconnectdb import Attr, FetchMode, FetchStyle, NotConnectedError, Variable

from fake_driver import FakeError, FakeStatement


def _replayed(stmt_handle):
    return [call for call in stmt_handle.calls if call[0] != "execute"]


def test_round_trip_survives_reconnect(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users WHERE id = :id")
    name = Variable()
    assert stmt.bind_column("name", name)
    assert stmt.bind_value(":id", 2)

    conn.disconnect()
    conn.connect()
    assert stmt.execute()

    handle = driver.current.statements[0]
    assert handle.sql == "SELECT name FROM users WHERE id = :id"
    assert handle.columns == {"name": name}
    assert handle.values == {":id": 2}
    assert handle.executed == 1

    stmt.fetch()
    assert name.value == "name-value"


def test_replay_order(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT a, b FROM t WHERE x = :x AND y = :y")
    style = FetchStyle(mode=FetchMode.DICT)
    x = Variable(1)

    # Calls are made in the reverse of the replay order on purpose
    stmt.set_fetch_mode(style)
    stmt.bind_value(":y", 5)
    stmt.bind_param(":x", x)
    stmt.bind_column(1, Variable())
    stmt.set_attribute(Attr.ARRAYSIZE, 50)

    conn.reconnect()
    stmt.row_count()

    assert _replayed(driver.current.statements[0]) == [
        ("set_attribute", Attr.ARRAYSIZE, 50),
        ("bind_column", 1),
        ("bind_param", ":x"),
        ("bind_value", ":y", 5),
        ("set_fetch_mode", style),
    ]


def test_last_write_wins(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT * FROM t WHERE id = :id")
    stmt.bind_value(":id", 1)
    stmt.bind_value(":id", 2)
    stmt.set_fetch_mode(FetchStyle(mode=FetchMode.TUPLE))
    stmt.set_fetch_mode(FetchStyle(mode=FetchMode.DICT))

    conn.reconnect()
    stmt.execute()
    assert _replayed(driver.current.statements[0]) == [
        ("bind_value", ":id", 2),
        ("set_fetch_mode", FetchStyle(mode=FetchMode.DICT)),
    ]


def test_value_then_reference_replays_reference_only(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT * FROM t WHERE id = :id")
    var = Variable(7)
    stmt.bind_value(":id", 3)
    stmt.bind_param(":id", var)

    conn.reconnect()
    stmt.execute()
    handle = driver.current.statements[0]
    assert _replayed(handle) == [("bind_param", ":id")]
    assert handle.params == {":id": var}
    assert handle.values == {}


def test_reference_then_value_replays_value_only(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT * FROM t WHERE id = :id")
    stmt.bind_param(":id", Variable(7))
    stmt.bind_value(":id", 3)

    conn.reconnect()
    stmt.execute()
    assert _replayed(driver.current.statements[0]) == [("bind_value", ":id", 3)]


def test_statement_not_rebuilt_while_connected(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT 1")
    stmt.execute()
    stmt.execute()
    assert len(driver.current.statements) == 1
    assert driver.current.statements[0].executed == 2


def test_deferred_column_binding_after_execute(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users")
    name = Variable()
    stmt.bind_column("name", name)

    driver.column_policy = "after_execute"
    conn.reconnect()

    assert stmt.execute()
    handle = driver.current.statements[0]
    assert [c for c in handle.calls if c[0] == "bind_column"] == [
        ("bind_column", "name"),
        ("bind_column", "name"),
    ]
    assert handle.columns == {"name": name}
    assert stmt._post_execute_columns == {}

    stmt.execute()
    # Not bound again once the deferred binding succeeded
    assert len([c for c in handle.calls if c[0] == "bind_column"]) == 2

    stmt.fetch()
    assert name.value == "name-value"


def test_deferred_column_binding_that_raises(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users")
    stmt.bind_column("name", Variable())

    driver.column_policy = "after_execute"
    driver.column_failure = "raise"
    conn.reconnect()

    # The refused binding does not surface as an error
    assert stmt.row_count() == 0
    assert "name" in stmt._post_execute_columns
    assert stmt.execute()
    assert stmt._post_execute_columns == {}


def test_deferred_column_binding_retried_on_next_execute(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users")
    stmt.bind_column("name", Variable())

    driver.column_policy = "never"
    conn.reconnect()
    assert stmt.execute()
    assert "name" in stmt._post_execute_columns

    driver.column_policy = "ok"
    assert stmt.execute()
    assert stmt._post_execute_columns == {}
    assert "name" in driver.current.statements[0].columns


def test_explicit_bind_column_clears_deferred(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users")
    stmt.bind_column("name", Variable())

    driver.column_policy = "never"
    conn.reconnect()
    stmt.row_count()
    assert "name" in stmt._post_execute_columns

    driver.column_policy = "ok"
    replacement = Variable()
    assert stmt.bind_column("name", replacement)
    assert stmt._post_execute_columns == {}
    assert stmt._bound_columns["name"][1] is replacement


def test_failed_execute_does_not_retry_deferred(make_conn, driver, clock):
    conn = make_conn()
    stmt = conn.prepare("SELECT name FROM users")
    stmt.bind_column("name", Variable())
    driver.column_policy = "after_execute"
    conn.reconnect()

    driver.fail_execute = True
    clock.advance(60)
    assert stmt.execute() is False
    assert "name" in stmt._post_execute_columns
    assert conn._liveness.observed_at != clock.now


def test_execute_updates_connection_liveness(make_conn, driver, clock):
    conn = make_conn()
    stmt = conn.prepare("UPDATE t SET x = 1")
    clock.advance(60)
    stmt.execute()
    clock.advance(1)
    assert conn.is_alive(cache_duration=3) is True
    assert driver.current.queries == []


def test_close_forgets_handle(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT 1")
    handle = driver.current.statements[0]
    assert len(conn._statements) == 1

    stmt.close()
    assert conn._statements == []
    assert handle.close_count == 1

    conn.disconnect()
    assert handle.close_count == 1


def test_garbage_collected_statement_forgets_handle(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT 1")
    handle = driver.current.statements[0]
    del stmt
    gc.collect()
    assert conn._statements == []
    assert handle.close_count == 1
    conn.disconnect()
    assert handle.close_count == 1


def test_closed_statement_rebuilds_on_use(make_conn, driver):
    conn = make_conn()
    with conn.prepare("SELECT 1") as stmt:
        stmt.bind_value(1, "a")
    assert conn._statements == []

    stmt.execute()
    assert len(driver.current.statements) == 2
    assert driver.current.statements[1].values == {1: "a"}
    assert len(conn._statements) == 1


def test_reconstruction_failure_reported(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT 1")
    conn.reconnect()
    driver.fail_prepare = True

    assert stmt.execute() is False
    assert stmt.fetch() is False
    assert stmt._handle is None
    assert conn._statements == []

    driver.fail_prepare = False
    assert stmt.execute() is True


def test_statement_requires_connection(make_conn):
    conn = make_conn(auto_reconnect=False)
    stmt = conn.prepare("SELECT 1")
    conn.disconnect()
    with pytest.raises(NotConnectedError):
        stmt.execute()


def test_statement_auto_reconnects(make_conn, driver):
    conn = make_conn(auto_reconnect=True)
    stmt = conn.prepare("SELECT 1")
    conn.disconnect()
    assert stmt.execute()
    assert conn.is_connected()
    assert len(driver.connections) == 2


def test_query_statement_rebuilt_without_running(make_conn, driver, clock):
    conn = make_conn()
    style = FetchStyle(mode=FetchMode.NAMESPACE)
    stmt = conn.query("SELECT * FROM t", style)
    conn.reconnect()
    clock.advance(60)

    assert stmt.fetch() == ("row",)
    handle = driver.current.statements[0]
    assert handle.sql == "SELECT * FROM t"
    assert driver.current.queries == []
    assert handle.executed == 0
    assert handle.fetch_style == style
    assert conn._liveness.observed_at != clock.now


def test_query_statement_not_rerun_by_row_count(make_conn, driver):
    conn = make_conn()
    stmt = conn.query("DELETE FROM t")
    conn.reconnect()

    assert stmt.row_count() == 0
    assert driver.current.statements[0].executed == 0

    stmt.execute()
    assert driver.current.statements[0].executed == 1


def test_param_spellings_share_one_binding(make_conn, driver):
    conn = make_conn()
    stmt = conn.prepare("SELECT * FROM t WHERE id = :id")
    var = Variable(2)
    stmt.bind_value(":id", 1)
    stmt.bind_param("id", var)

    conn.reconnect()
    stmt.execute()
    handle = driver.current.statements[0]
    assert _replayed(handle) == [("bind_param", "id")]
    assert handle.values == {}

    stmt.bind_value("id", 3)
    conn.reconnect()
    stmt.execute()
    assert _replayed(driver.current.statements[0]) == [("bind_value", "id", 3)]


def test_replay_errors_propagate(make_conn, monkeypatch):
    conn = make_conn()
    stmt = conn.prepare("SELECT 1")
    stmt.set_attribute(Attr.ARRAYSIZE, 10)
    conn.reconnect()

    def refuse(self, attribute, value):
        raise FakeError("attribute refused")

    # Only column bindings are forgiven during replay
    monkeypatch.setattr(FakeStatement, "set_attribute", refuse)
    with pytest.raises(FakeError):
        stmt.execute()


def test_pass_through_reads(make_conn):
    conn = make_conn()
    stmt = conn.prepare("SELECT row FROM t")
    assert stmt.fetch_all() == [("row",)]
    assert stmt.fetch_column() == "row"
    assert stmt.column_count() == 1
    assert stmt.get_column_meta(0) == {"name": "row", "index": 0}
    assert stmt.next_rowset() is False
    assert stmt.close_cursor() is True
    assert stmt.error_code() == "00000"
    assert stmt.debug_dump_params() == "SQL: [17] SELECT row FROM t"
