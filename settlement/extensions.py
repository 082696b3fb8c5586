"""
Extension instances shared across the package.

Bound to the app in create_app() via init_app(), so models and services
can import them without an app object.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()

# Only checkout routes are limited (@limiter.limit); storage is read from
# RATELIMIT_STORAGE_URI at init_app time.
limiter = Limiter(key_func=get_remote_address)


def serialize_sqlite_writes(engine):
    """Make every SQLite transaction take the write lock at BEGIN.

    SQLite ignores SELECT ... FOR UPDATE, and two deferred transactions
    that read before writing deadlock on lock upgrade. With BEGIN IMMEDIATE
    a second writer waits (busy_timeout) until the first commits, which
    gives the store's insert-if-absent and locked read-modify-write the
    same serialization they get from row locks on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        # pysqlite must not emit its own BEGIN; the listener below does
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA busy_timeout=5000;")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
