"""Example: statements that keep working across a reconnect.

Uses the SQLite driver from the standard library, so nothing else is needed:
    python example.py
"""

import os
import tempfile

import reconnectdb
from reconnectdb import FetchMode, FetchStyle, ParamType, Variable


def main():
    # Create a temporary database file for this example.
    db_path = os.path.join(tempfile.gettempdir(), "reconnectdb_example.db")

    conn = reconnectdb.connect(f"sqlite:///{db_path}", lazy_connect=True, auto_reconnect=True)
    print(f"Connected after construction: {conn.is_connected()}")

    # Create a table. This is the first use, so it connects now.
    conn.exec("""
        CREATE TABLE IF NOT EXISTS users (
            id    INTEGER PRIMARY KEY,
            name  TEXT NOT NULL,
            email TEXT UNIQUE
        )
    """)
    conn.exec("DELETE FROM users")

    insert = conn.prepare("INSERT INTO users (name, email) VALUES (:name, :email)")
    name = Variable()
    email = Variable()
    insert.bind_param(":name", name)
    insert.bind_param(":email", email)
    for name.value, email.value in [
        ("Alice", "alice@example.com"),
        ("Bob", "bob@example.com"),
    ]:
        insert.execute()

    lookup = conn.prepare("SELECT id, name FROM users WHERE email = :email")
    lookup.bind_value(":email", "bob@example.com")
    user_id = Variable()
    lookup.bind_column(1, user_id, ParamType.INT)
    lookup.set_fetch_mode(FetchMode.BOUND)

    # Drop the connection. Both statements rebuild themselves on next use.
    conn.disconnect()
    print(f"Connected after disconnect: {conn.is_connected()}")

    name.value, email.value = "Carol", "carol@example.com"
    insert.execute()

    lookup.execute()
    lookup.fetch()
    print(f"\nLookup by email after reconnect: id={user_id.value}")

    print("\nAll users:")
    rows = conn.query("SELECT id, name, email FROM users ORDER BY id", FetchStyle(mode=FetchMode.DICT))
    for row in rows.fetch_all():
        print(f"  id={row['id']}  name={row['name']}  email={row['email']}")

    print(f"\nAlive: {conn.is_alive(cache_duration=3)}")

    conn.disconnect()

    # Clean up.
    try:
        os.unlink(db_path)
    except FileNotFoundError:
        pass

    print("\nDone.")


if __name__ == "__main__":
    main()
