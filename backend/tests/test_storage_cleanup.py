import os
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect
from sqlalchemy.sql import text

from conftest import png_bytes, post_assessment
from pbd_tracker.cleanup import purge_orphaned_uploads
from pbd_tracker.db import Base, build_engine, ensure_schema
from pbd_tracker import main
from pbd_tracker.errors import ValidationFailed
from pbd_tracker.settings import settings
from pbd_tracker.storage import EvidenceStore, Upload


def test_names_are_unique_and_sanitized(store):
	a = store.save_image(Upload("../../etc/pass wd.png", "image/png", png_bytes()))
	b = store.save_image(Upload("../../etc/pass wd.png", "image/png", png_bytes()))
	assert a.name != b.name
	assert a.path.parent == store.root
	assert a.name.endswith("-pass_wd.png")
	assert a.url == "/uploads/" + a.name


def test_rejects_oversized_and_empty_uploads(tmp_path):
	small = EvidenceStore(tmp_path, max_bytes=10)
	with pytest.raises(ValidationFailed):
		small.save_image(Upload("big.png", "image/png", png_bytes()))
	with pytest.raises(ValidationFailed):
		small.save_image(Upload("empty.png", "image/png", b""))


def test_path_for_url_stays_inside_root(store):
	assert store.path_for_url("/uploads/x.png") == store.root / "x.png"
	assert store.path_for_url("/uploads/../secret") is None
	assert store.path_for_url("/elsewhere/x.png") is None
	assert store.path_for_url(None) is None


def _age(path, seconds):
	old = time.time() - seconds
	os.utime(path, (old, old))


def test_sweep_removes_only_old_unreferenced_files(client, seed, store, db):
	post_assessment(client, seed, "ali", files={"evidence": ("kept.png", png_bytes(), "image/png")})
	kept = next(store.iter_files())
	stray_old = store.save_image(Upload("stray.png", "image/png", png_bytes()))
	stray_new = store.save_image(Upload("fresh.png", "image/png", png_bytes()))
	_age(kept, 7200)
	_age(stray_old.path, 7200)

	removed = purge_orphaned_uploads(db, store, grace=timedelta(hours=1))
	assert removed == 1
	assert kept.exists()
	assert not stray_old.path.exists()
	assert stray_new.path.exists()


def test_legacy_skills_column_is_migrated(tmp_path):
	eng = build_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
	Base.metadata.create_all(bind=eng)
	with eng.begin() as conn:
		conn.execute(text("ALTER TABLE assessments ADD COLUMN skills TEXT"))
		conn.execute(text("INSERT INTO classes (id, year, name, teacher_name) VALUES (1, 'Year 4', 'Bestari', 'Ms. Tan')"))
		conn.execute(text("INSERT INTO students (id, class_id, name, notes) VALUES (1, 1, 'Ali', '')"))
		conn.execute(text("INSERT INTO subjects (id, class_id, name) VALUES (1, 1, 'English')"))
		conn.execute(text("INSERT INTO dskp_items (id, subject_id, sk, sp) VALUES (1, 1, 'SK', 'SP')"))
		conn.execute(text(
			"INSERT INTO assessments (id, student_id, subject_id, dskp_item_id, tp_level, note, timestamp, skills) "
			"VALUES (1, 1, 1, 1, 3, '', '2025-01-01 08:00:00', 'Reading,Writing,reading')"
		))
	assert "skills" in {c["name"] for c in inspect(eng).get_columns("assessments")}

	assert ensure_schema(eng) == 1
	assert ensure_schema(eng) == 0

	with eng.connect() as conn:
		names = conn.execute(
			text("SELECT name FROM assessment_skills WHERE assessment_id = 1 ORDER BY position")
		).scalars().all()
	assert names == ["Reading", "Writing"]
	eng.dispose()


def test_cleanup_watcher_runs_until_shutdown(engine, session_factory, tmp_path, monkeypatch):
	monkeypatch.setattr(main, "engine", engine)
	monkeypatch.setattr(main, "SessionLocal", session_factory)
	monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
	monkeypatch.setattr(settings, "cleanup_interval_hours", 1)

	with TestClient(main.app) as c:
		task = main.app.state.cleanup_task
		assert c.get("/health").status_code == 200
		assert not task.done()
	assert task.cancelled()
	assert main.app.state.cleanup_task is None
