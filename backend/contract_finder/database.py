import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from contract_finder.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- USERS
-- ============================================================
CREATE TABLE IF NOT EXISTS users (
    id                TEXT PRIMARY KEY,
    email             TEXT NOT NULL UNIQUE,
    api_token_hash    TEXT NOT NULL UNIQUE,
    google_credential TEXT,
    workspace_email   TEXT,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

-- ============================================================
-- SEARCH JOBS
-- ============================================================
CREATE TABLE IF NOT EXISTS search_jobs (
    id             TEXT PRIMARY KEY,
    user_id        TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    description    TEXT NOT NULL,
    request_json   TEXT NOT NULL,
    mode           TEXT NOT NULL DEFAULT 'DIRECT'
                   CHECK(mode IN ('DIRECT','BULK_EXPORT')),
    source         TEXT NOT NULL CHECK(source IN ('MAIL','FILES','ALL')),
    status         TEXT NOT NULL DEFAULT 'CREATED'
                   CHECK(status IN ('CREATED','PROCESSING','COMPLETED','FAILED')),
    error_message  TEXT,
    results        TEXT,
    result_count   INTEGER NOT NULL DEFAULT 0,
    processed      INTEGER NOT NULL DEFAULT 0,
    matter_id      TEXT,
    mail_export_id TEXT,
    file_export_id TEXT,
    poll_failures  INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at     TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_search_jobs_user ON search_jobs(user_id);
CREATE INDEX IF NOT EXISTS idx_search_jobs_status ON search_jobs(status);
"""


MIGRATIONS = [
    # v0.2: cached results for processed searches
    "ALTER TABLE search_jobs ADD COLUMN processed INTEGER NOT NULL DEFAULT 0",
    # v0.3: consecutive export status check failures
    "ALTER TABLE search_jobs ADD COLUMN poll_failures INTEGER NOT NULL DEFAULT 0",
]


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    # Run migrations idempotently (ALTER TABLE fails if column exists)
    for migration in MIGRATIONS:
        try:
            conn.execute(migration)
            conn.commit()
        except sqlite3.OperationalError:
            pass  # column already exists
    conn.close()
