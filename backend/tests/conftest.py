import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.orm import sessionmaker

from pbd_tracker.db import Base, build_engine, get_db
from pbd_tracker.main import app
from pbd_tracker.storage import EvidenceStore, get_evidence_store


def png_bytes(color: str = "red") -> bytes:
	buf = io.BytesIO()
	Image.new("RGB", (4, 4), color).save(buf, format="PNG")
	return buf.getvalue()


@pytest.fixture
def engine():
	eng = build_engine("sqlite://")
	Base.metadata.create_all(bind=eng)
	yield eng
	eng.dispose()


@pytest.fixture
def session_factory(engine):
	return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
	session = session_factory()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def store(tmp_path):
	return EvidenceStore(tmp_path / "uploads", max_bytes=1024 * 1024)


@pytest.fixture
def client(session_factory, store):
	def _get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = _get_db
	app.dependency_overrides[get_evidence_store] = lambda: store
	yield TestClient(app)
	app.dependency_overrides.clear()


@pytest.fixture
def seed(client):
	"""A class with two students, one subject and one DSKP item, plus a second empty class."""
	class_id = client.post("/api/classes", json={"year": "Year 4", "name": "Bestari", "teacher_name": "Ms. Tan"}).json()["id"]
	other_class_id = client.post("/api/classes", json={"year": "Year 5", "name": "Cemerlang", "teacher_name": "Mr. Lim"}).json()["id"]
	ali = client.post(f"/api/classes/{class_id}/students", json={"name": "Ali"}).json()["id"]
	mei = client.post(f"/api/classes/{class_id}/students", json={"name": "Mei Ling", "notes": "left-handed"}).json()["id"]
	subject_id = client.post(f"/api/classes/{class_id}/subjects", json={"name": "English"}).json()["id"]
	item_id = client.post(
		f"/api/subjects/{subject_id}/dskp",
		json={"sk": "Listening comprehension", "sp": "Identify main idea"},
	).json()["id"]
	return {
		"class_id": class_id,
		"other_class_id": other_class_id,
		"ali": ali,
		"mei": mei,
		"subject_id": subject_id,
		"item_id": item_id,
	}


def post_assessment(client, seed, student, **fields):
	data = {
		"student_id": str(seed[student]),
		"subject_id": str(seed["subject_id"]),
		"dskp_item_id": str(seed["item_id"]),
		"tp_level": "4",
	}
	data.update({k: str(v) for k, v in fields.items() if k != "files"})
	return client.post("/api/assessments", data=data, files=fields.get("files"))
