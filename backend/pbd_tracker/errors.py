from __future__ import annotations
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TrackerError(Exception):
	status_code = 500
	code = "INTERNAL_ERROR"

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message


class NotFoundError(TrackerError):
	status_code = 404
	code = "NOT_FOUND"


class ValidationFailed(TrackerError):
	status_code = 422
	code = "VALIDATION_ERROR"


class UpstreamError(TrackerError):
	"""The document-parsing service failed or answered with something unusable."""
	status_code = 502
	code = "UPSTREAM_ERROR"


class ParserUnavailable(TrackerError):
	status_code = 503
	code = "PARSER_UNAVAILABLE"


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(code: str, message: str) -> dict:
	return {"error": {"code": code, "message": message}, "generated_at": _now_iso()}


def add_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(TrackerError)
	async def tracker_error_handler(request: Request, exc: TrackerError):
		if exc.status_code >= 500:
			logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
		return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))

	@app.exception_handler(Exception)
	async def unhandled_exception_handler(request: Request, exc: Exception):
		logger.exception("Unhandled error on %s %s", request.method, request.url.path)
		return JSONResponse(status_code=500, content=error_body("INTERNAL_ERROR", str(exc)))
