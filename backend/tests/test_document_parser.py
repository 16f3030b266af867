import asyncio
import base64
import json

import httpx
import pytest

from pbd_tracker.document_parser import DocumentParser, get_document_parser
from pbd_tracker.errors import ParserUnavailable, UpstreamError, ValidationFailed
from pbd_tracker.gemini_client import GeminiClient
from pbd_tracker.main import app
from pbd_tracker.settings import settings


def _gemini_reply(payload) -> httpx.Response:
	text = payload if isinstance(payload, str) else json.dumps(payload)
	return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _parser(handler, **client_kwargs) -> DocumentParser:
	transport = httpx.MockTransport(handler)
	client_kwargs.setdefault("backoff", 0)
	return DocumentParser(lambda: GeminiClient(api_key="test-key", transport=transport, **client_kwargs))


def test_roster_request_carries_file_and_schema():
	seen = {}

	def handler(request: httpx.Request):
		seen["body"] = json.loads(request.content)
		seen["key"] = request.url.params.get("key")
		return _gemini_reply(["Ali", " Mei Ling ", ""])

	names = asyncio.run(_parser(handler).parse_student_list(b"Ali\nMei Ling\n", "text/plain"))
	assert names == ["Ali", "Mei Ling"]
	assert seen["key"] == "test-key"
	parts = seen["body"]["contents"][0]["parts"]
	assert parts[1]["inline_data"] == {"mime_type": "text/plain", "data": base64.b64encode(b"Ali\nMei Ling\n").decode()}
	assert seen["body"]["generationConfig"]["responseSchema"] == {"type": "ARRAY", "items": {"type": "STRING"}}


def test_dskp_pairs_are_cleaned():
	reply = [{"sk": "1.1 Listening", "sp": "1.1.1 Main idea"}, {"sk": "1.2", "sp": ""}, "junk"]
	items = asyncio.run(_parser(lambda r: _gemini_reply(reply)).parse_dskp(b"%PDF-1.4", "application/pdf"))
	assert items == [{"sk": "1.1 Listening", "sp": "1.1.1 Main idea"}]


def test_fenced_json_is_accepted():
	reply = 'Here you go:\n```json\n["Ali"]\n```'
	assert asyncio.run(_parser(lambda r: _gemini_reply(reply)).parse_student_list(b"x", "image/png")) == ["Ali"]


def test_transient_errors_are_retried():
	calls = []

	def handler(request):
		calls.append(1)
		if len(calls) < 3:
			return httpx.Response(503)
		return _gemini_reply(["Ali"])

	assert asyncio.run(_parser(handler, max_retries=2).parse_student_list(b"x", "text/plain")) == ["Ali"]
	assert len(calls) == 3


def test_timeouts_exhaust_retries():
	calls = []

	def handler(request):
		calls.append(1)
		raise httpx.ReadTimeout("timed out", request=request)

	with pytest.raises(UpstreamError):
		asyncio.run(_parser(handler, max_retries=1).parse_student_list(b"x", "text/plain"))
	assert len(calls) == 2


def test_client_errors_fail_fast():
	calls = []

	def handler(request):
		calls.append(1)
		return httpx.Response(400, json={"error": "bad"})

	with pytest.raises(UpstreamError):
		asyncio.run(_parser(handler, max_retries=3).parse_dskp(b"x", "application/pdf"))
	assert len(calls) == 1


def test_malformed_reply_is_upstream_error():
	with pytest.raises(UpstreamError):
		asyncio.run(_parser(lambda r: _gemini_reply("no json here")).parse_student_list(b"x", "text/plain"))
	with pytest.raises(UpstreamError):
		asyncio.run(_parser(lambda r: httpx.Response(200, json={"candidates": []})).parse_student_list(b"x", "text/plain"))


def test_unsupported_file_type():
	with pytest.raises(ValidationFailed):
		asyncio.run(_parser(lambda r: _gemini_reply([])).parse_dskp(b"x", "image/png"))


def test_missing_api_key(monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", None)
	with pytest.raises(ParserUnavailable):
		GeminiClient()


@pytest.fixture
def fake_parser():
	reply = {"names": ["Ali", "Mei Ling"], "dskp": [{"sk": "1.1 Listening", "sp": "1.1.1 Main idea"}]}

	def handler(request):
		body = json.loads(request.content)
		schema = body["generationConfig"]["responseSchema"]
		return _gemini_reply(reply["dskp"] if schema["items"]["type"] == "OBJECT" else reply["names"])

	app.dependency_overrides[get_document_parser] = lambda: _parser(handler)
	yield
	app.dependency_overrides.pop(get_document_parser, None)


def test_parse_endpoints(client, fake_parser):
	r = client.post("/api/documents/student-names", files={"file": ("roster.txt", b"Ali\nMei Ling", "text/plain")})
	assert r.json() == {"names": ["Ali", "Mei Ling"]}
	r = client.post("/api/documents/dskp", files={"file": ("dskp.pdf", b"%PDF-1.4", "application/pdf")})
	assert r.json() == {"items": [{"sk": "1.1 Listening", "sp": "1.1.1 Main idea"}]}


def test_import_endpoints_insert_rows(client, fake_parser):
	class_id = client.post("/api/classes", json={"name": "Bestari"}).json()["id"]
	r = client.post(f"/api/classes/{class_id}/students/import", files={"file": ("roster.pdf", b"%PDF", "application/pdf")})
	assert [s["name"] for s in r.json()] == ["Ali", "Mei Ling"]
	assert len(client.get(f"/api/classes/{class_id}/students").json()) == 2

	subject_id = client.post(f"/api/classes/{class_id}/subjects", json={"name": "English"}).json()["id"]
	r = client.post(f"/api/subjects/{subject_id}/dskp/import", files={"file": ("dskp.pdf", b"%PDF", "application/pdf")})
	assert r.status_code == 200
	assert client.get(f"/api/subjects/{subject_id}/dskp").json()[0]["sk"] == "1.1 Listening"


def test_parser_failures_surface_as_error_envelope(client, monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", None)
	r = client.post("/api/documents/student-names", files={"file": ("roster.txt", b"Ali", "text/plain")})
	assert r.status_code == 503
	assert r.json()["error"]["code"] == "PARSER_UNAVAILABLE"

	def broken(request):
		return httpx.Response(500)

	app.dependency_overrides[get_document_parser] = lambda: _parser(broken, max_retries=0)
	try:
		r = client.post("/api/documents/student-names", files={"file": ("roster.txt", b"Ali", "text/plain")})
	finally:
		app.dependency_overrides.pop(get_document_parser, None)
	assert r.status_code == 502
	assert r.json()["error"]["code"] == "UPSTREAM_ERROR"
