from compliance_alerts.database.base import Base
from compliance_alerts.database.engine import engine, ensure_sqlite_schema
from compliance_alerts.database.session import SessionLocal, get_db

__all__ = ["Base", "engine", "ensure_sqlite_schema", "SessionLocal", "get_db"]
