import logging
import sqlite3

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from compliance_alerts.config import get_settings
from compliance_alerts.core.constants import ESCALATION_KEY_WHERE, PLANNED_KEY_WHERE

logger = logging.getLogger(__name__)

_SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _is_memory_database(url) -> bool:
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def set_sqlite_pragmas(dbapi_connection, *, file_backed: bool = True) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout={}".format(_SQLITE_BUSY_TIMEOUT_SECONDS * 1000))
        if file_backed:
            try:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            except sqlite3.DatabaseError:
                logger.warning("SQLite WAL mode unavailable; using default journal.")
    finally:
        cursor.close()


def build_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; SQLite gets pragmas and a shared in-memory pool."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    memory = _is_memory_database(url)
    kwargs = {"poolclass": StaticPool} if memory else {}
    sqlite_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": _SQLITE_BUSY_TIMEOUT_SECONDS},
        pool_pre_ping=True,
        **kwargs,
    )

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        set_sqlite_pragmas(dbapi_connection, file_backed=not memory)

    return sqlite_engine


engine = build_engine(get_settings().DATABASE_URL)


# Columns added after the first release of each table.
_SQLITE_COLUMN_DEFAULTS = {
    "alerts": {
        "provider_message_id": "VARCHAR(128)",
        "claimed_by": "VARCHAR(120)",
        "claimed_at": "DATETIME",
        "escalated_from_id": "INTEGER",
        "cancelled_at": "DATETIME",
    },
    "alert_preferences": {
        "email_override": "VARCHAR(320)",
        "phone_number": "VARCHAR(32)",
    },
}

_LEGACY_ALERT_INDEXES = ("uq_alerts_schedule_key",)
# name -> (columns, partial WHERE)
_ALERT_UNIQUE_INDEXES = {
    "uq_alerts_planned_key": (
        ("deadline_id", "channel", "scheduled_for", "destination"),
        PLANNED_KEY_WHERE,
    ),
    "uq_alerts_escalation_target": (
        ("escalated_from_id", "destination"),
        ESCALATION_KEY_WHERE,
    ),
}


def _escape_sqlite_identifier(value: str) -> str:
    return value.replace('"', '""')


def _get_sqlite_columns(conn, table_name: str):
    escaped_table = _escape_sqlite_identifier(table_name)
    # noinspection SqlNoDataSourceInspection
    result = conn.exec_driver_sql(
        f'PRAGMA table_info("{escaped_table}")'
    ).mappings()
    return {row["name"] for row in result}


def _get_sqlite_index_names(conn, table_name: str):
    escaped_table = _escape_sqlite_identifier(table_name)
    # noinspection SqlNoDataSourceInspection
    result = conn.exec_driver_sql(
        f'PRAGMA index_list("{escaped_table}")'
    ).mappings()
    return {row["name"] for row in result}


def ensure_sqlite_schema(bind=None):
    target = bind or engine
    if target.dialect.name != "sqlite":
        return
    with target.connect() as conn:
        alerts_exists = False
        with conn.begin():
            for table_name, columns in _SQLITE_COLUMN_DEFAULTS.items():
                existing = _get_sqlite_columns(conn, table_name)
                if not existing:
                    continue
                if table_name == "alerts":
                    alerts_exists = True
                for column_name, ddl in columns.items():
                    if column_name in existing:
                        continue
                    escaped_table = _escape_sqlite_identifier(table_name)
                    escaped_column = _escape_sqlite_identifier(column_name)
                    # noinspection SqlNoDataSourceInspection
                    conn.exec_driver_sql(
                        f'ALTER TABLE "{escaped_table}" ADD COLUMN "{escaped_column}" {ddl}'
                    )
                    logger.info("Added column %s.%s", table_name, column_name)

        if not alerts_exists:
            return

        with conn.begin():
            index_names = _get_sqlite_index_names(conn, "alerts")
            for legacy in _LEGACY_ALERT_INDEXES:
                if legacy in index_names:
                    # noinspection SqlNoDataSourceInspection
                    conn.exec_driver_sql('DROP INDEX "{}"'.format(_escape_sqlite_identifier(legacy)))
                    logger.info("Dropped index %s", legacy)

            for index_name, (columns, where) in _ALERT_UNIQUE_INDEXES.items():
                if index_name in index_names:
                    continue
                column_list = ", ".join(columns)
                # noinspection SqlNoDataSourceInspection
                duplicate = conn.exec_driver_sql(
                    "SELECT 1 FROM alerts WHERE {} GROUP BY {} HAVING COUNT(*) > 1 LIMIT 1".format(
                        where, column_list
                    )
                ).fetchone()
                if duplicate:
                    logger.warning("Skipping unique index on alerts(%s) due to duplicates.", column_list)
                    continue
                # noinspection SqlNoDataSourceInspection
                conn.exec_driver_sql(
                    "CREATE UNIQUE INDEX IF NOT EXISTS {} ON alerts({}) WHERE {}".format(
                        index_name, column_list, where
                    )
                )
