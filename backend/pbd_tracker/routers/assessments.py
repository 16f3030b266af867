from __future__ import annotations
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, TypeAdapter, ValidationError, field_serializer
from sqlalchemy.orm import Session

from ..assessment_query import Predicate, assessment_row, build_filters, query_assessments
from ..db import get_db
from ..errors import ValidationFailed
from ..export import assessments_to_csv, export_filename
from ..recording import BulkEntry, record_assessment, record_bulk, utc_isoformat
from ..storage import EvidenceStore, Upload, get_evidence_store
from .classes import Created

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessments", tags=["assessments"])

EVIDENCE_FIELD_PREFIX = "evidence_"

_entries_adapter = TypeAdapter(List[BulkEntry])
_timestamp_adapter = TypeAdapter(datetime)


class AssessmentOut(BaseModel):
	id: int
	student_id: int
	subject_id: int
	dskp_item_id: int
	class_id: int
	tp_level: int
	skills: str
	skill_tags: List[str]
	evidence_url: Optional[str] = None
	note: str
	timestamp: datetime
	student_name: str
	subject_name: str
	sk: str
	sp: str

	@field_serializer("timestamp")
	def serialize_timestamp(self, ts: datetime) -> str:
		return utc_isoformat(ts)


class BulkOut(BaseModel):
	success: bool = True
	count: int
	ignored_evidence: List[int] = []


def assessment_filters(
	class_id: Optional[str] = Query(None),
	student_id: Optional[str] = Query(None),
	subject_id: Optional[str] = Query(None),
	skill: Optional[str] = Query(None),
	search: Optional[str] = Query(None),
) -> List[Predicate]:
	# Ids stay strings here so a malformed one filters to nothing instead of a 422
	return build_filters(
		class_id=class_id,
		student_id=student_id,
		subject_id=subject_id,
		skill=skill,
		search=search,
	)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
	if raw is None or not raw.strip():
		return None
	try:
		return _timestamp_adapter.validate_python(raw.strip())
	except ValidationError:
		raise ValidationFailed(f"timestamp {raw!r} is not a valid ISO 8601 date-time")


async def _read_upload(upload) -> Optional[Upload]:
	# Browsers send an empty part when the file input was left blank
	if upload is None:
		return None
	data = await upload.read()
	if not data and not upload.filename:
		return None
	return Upload(upload.filename or "", upload.content_type, data)


@router.get("", response_model=List[AssessmentOut])
def list_assessments(
	predicates: List[Predicate] = Depends(assessment_filters),
	db: Session = Depends(get_db),
):
	return [assessment_row(a) for a in query_assessments(db, predicates)]


@router.get("/export")
def export_assessments(
	predicates: List[Predicate] = Depends(assessment_filters),
	db: Session = Depends(get_db),
):
	body = assessments_to_csv(query_assessments(db, predicates))
	return Response(
		content=body,
		media_type="text/csv; charset=utf-8",
		headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
	)


@router.post("", response_model=Created)
async def create_assessment(
	student_id: int = Form(...),
	subject_id: int = Form(...),
	dskp_item_id: int = Form(...),
	tp_level: int = Form(...),
	skills: Optional[str] = Form(None),
	note: Optional[str] = Form(None),
	timestamp: Optional[str] = Form(None),
	evidence: Optional[UploadFile] = File(None),
	db: Session = Depends(get_db),
	store: EvidenceStore = Depends(get_evidence_store),
):
	row = record_assessment(
		db,
		store,
		student_id=student_id,
		subject_id=subject_id,
		dskp_item_id=dskp_item_id,
		tp_level=tp_level,
		skills=skills,
		note=note,
		timestamp=_parse_timestamp(timestamp),
		evidence=await _read_upload(evidence),
	)
	return Created(id=row.id)


@router.post("/bulk", response_model=BulkOut)
async def create_bulk(
	request: Request,
	subject_id: int = Form(...),
	dskp_item_id: int = Form(...),
	assessments: str = Form("[]"),
	timestamp: Optional[str] = Form(None),
	db: Session = Depends(get_db),
	store: EvidenceStore = Depends(get_evidence_store),
):
	try:
		entries = _entries_adapter.validate_json(assessments or "[]")
	except ValidationError as e:
		raise ValidationFailed(f"invalid assessments payload: {_summarize(e)}")

	evidence: Dict[int, Upload] = {}
	form = await request.form()
	for key, value in form.multi_items():
		if not key.startswith(EVIDENCE_FIELD_PREFIX) or isinstance(value, str):
			continue
		suffix = key[len(EVIDENCE_FIELD_PREFIX):]
		try:
			sid = int(suffix)
		except ValueError:
			raise ValidationFailed(f"evidence field {key!r} does not name a student id")
		upload = await _read_upload(value)
		if upload is not None:
			evidence[sid] = upload

	result = record_bulk(
		db,
		store,
		subject_id=subject_id,
		dskp_item_id=dskp_item_id,
		entries=entries,
		timestamp=_parse_timestamp(timestamp),
		evidence=evidence,
	)
	if result.ignored_evidence:
		logger.info("Ignored evidence for students without entries: %s", result.ignored_evidence)
	return BulkOut(count=result.count, ignored_evidence=result.ignored_evidence)


def _summarize(err: ValidationError) -> str:
	first = err.errors()[0]
	loc = ".".join(str(p) for p in first.get("loc", ()))
	return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
