from __future__ import annotations
import logging
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)


DATABASE_URL = settings.database_url or "sqlite:///./markpal.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Additive column migrations for databases created by earlier versions (SQLite-friendly)
_ADDED_COLUMNS = {
	"auth_users": {
		"email": "VARCHAR(256)",
		"tier": "VARCHAR(16) DEFAULT 'free' NOT NULL",
		"questions_left": "INTEGER DEFAULT 5 NOT NULL",
		"questions_reset_date": "DATETIME",
		"billing_customer_id": "VARCHAR(128)",
	},
	"questions": {
		"subject": "VARCHAR(64)",
		"supersedes_id": "INTEGER",
	},
	"question_attempts": {
		"version_number": "INTEGER DEFAULT 1 NOT NULL",
		"is_saved": "BOOLEAN DEFAULT 0 NOT NULL",
		"name": "VARCHAR(256)",
	},
}


def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except SQLAlchemyError:
		return
	for table, columns in _ADDED_COLUMNS.items():
		if table not in tables:
			continue
		existing = {c["name"] for c in inspector.get_columns(table)}
		with engine.begin() as conn:
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
	if "question_attempts" in tables:
		try:
			with engine.begin() as conn:
				conn.exec_driver_sql(
					"CREATE UNIQUE INDEX IF NOT EXISTS uq_attempts_version "
					"ON question_attempts (username, question_id, version_number)"
				)
		except SQLAlchemyError as exc:
			logger.warning("Could not add the attempt version index: %s", exc)
