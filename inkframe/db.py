from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import text
import os

DATABASE_URL = os.getenv("INKFRAME_DATABASE_URL", "sqlite:///./inkframe.db")

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _column_names(conn, table: str) -> set[str]:
    cols = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
    return {row[1] for row in cols}  # (cid, name, type, notnull, dflt_value, pk)


def ensure_sqlite_schema():
    """
    Lightweight runtime schema patching for SQLite.

    `Base.metadata.create_all()` won't add new columns to existing tables.
    This keeps local/dev installs working without requiring Alembic.
    """
    if not DATABASE_URL.startswith("sqlite"):
        return

    with engine.begin() as conn:
        device_cols = _column_names(conn, "device")
        if device_cols:
            if "timezone" not in device_cols:
                conn.execute(text("ALTER TABLE device ADD COLUMN timezone VARCHAR"))
            if "maximum_compatibility" not in device_cols:
                conn.execute(text("ALTER TABLE device ADD COLUMN maximum_compatibility INTEGER DEFAULT 0"))
            conn.execute(text("UPDATE device SET mac_address=upper(mac_address) WHERE mac_address <> upper(mac_address)"))
            conn.execute(text("UPDATE device SET rotate=0 WHERE rotate IS NULL"))

        plugin_cols = _column_names(conn, "plugin")
        if plugin_cols:
            if "current_image_geometry" not in plugin_cols:
                conn.execute(text("ALTER TABLE plugin ADD COLUMN current_image_geometry VARCHAR"))
                # rasters cached before the column existed have an unknown geometry
                conn.execute(text("UPDATE plugin SET current_image=NULL"))
            if "configuration_template" not in plugin_cols:
                conn.execute(text("ALTER TABLE plugin ADD COLUMN configuration_template JSON"))
            if "plugin_type" not in plugin_cols:
                conn.execute(text("ALTER TABLE plugin ADD COLUMN plugin_type VARCHAR NOT NULL DEFAULT 'recipe'"))

        model_cols = _column_names(conn, "device_model")
        if model_cols and "palette" not in model_cols:
            conn.execute(text("ALTER TABLE device_model ADD COLUMN palette JSON"))
