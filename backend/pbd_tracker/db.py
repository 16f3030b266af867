from __future__ import annotations
import logging

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import text
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
	"""Create an engine for `url`, enforcing foreign keys on SQLite.

	In-memory SQLite URLs share one connection so every session sees the
	same database.
	"""
	kwargs = {"future": True}
	if url.startswith("sqlite"):
		kwargs["connect_args"] = {"check_same_thread": False}
		if url in ("sqlite://", "sqlite:///:memory:"):
			kwargs["poolclass"] = StaticPool
	eng = create_engine(url, **kwargs)
	if url.startswith("sqlite"):
		event.listen(eng, "connect", _enable_sqlite_foreign_keys)
	return eng


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
	cursor = dbapi_connection.cursor()
	cursor.execute("PRAGMA foreign_keys=ON")
	cursor.close()


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Lightweight migration for databases created before tags moved to their own table
def ensure_schema(bind: Engine | None = None) -> int:
	bind = bind or engine
	inspector = inspect(bind)
	tables = set(inspector.get_table_names())
	if "assessments" not in tables or "assessment_skills" not in tables:
		return 0
	cols = {c["name"] for c in inspector.get_columns("assessments")}
	if "skills" not in cols:
		return 0
	from .models import split_skills

	migrated = 0
	with bind.begin() as conn:
		rows = conn.exec_driver_sql(
			"SELECT a.id, a.skills FROM assessments a "
			"WHERE a.skills IS NOT NULL AND a.skills != '' "
			"AND NOT EXISTS (SELECT 1 FROM assessment_skills s WHERE s.assessment_id = a.id)"
		).fetchall()
		for assessment_id, raw in rows:
			for position, name in enumerate(split_skills(raw)):
				conn.execute(
					text("INSERT INTO assessment_skills (assessment_id, position, name) VALUES (:a, :p, :n)"),
					{"a": assessment_id, "p": position, "n": name},
				)
			migrated += 1
	if migrated:
		logger.info("Migrated skill tags for %d legacy assessments", migrated)
	return migrated
