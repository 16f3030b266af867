from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import ValidationFailed
from .models import MAX_ID, MIN_ID, TP_LEVELS, Assessment, DskpItem, Student, Subject, fits_id_column, split_skills
from .storage import EvidenceStore, StoredFile, Upload

logger = logging.getLogger(__name__)


class BulkEntry(BaseModel):
	student_id: int = Field(ge=MIN_ID, le=MAX_ID)
	tp_level: int = Field(ge=1, le=6)
	skills: Union[str, List[str]] = ""
	note: Optional[str] = ""


@dataclass
class BulkResult:
	count: int
	ignored_evidence: List[int] = field(default_factory=list)


def normalize_timestamp(ts: Optional[datetime]) -> datetime:
	"""Return `ts` as naive UTC, defaulting to now."""
	if ts is None:
		return datetime.utcnow()
	if ts.tzinfo is not None:
		ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
	return ts


def utc_isoformat(ts: datetime) -> str:
	"""Render a stored (naive UTC) timestamp as `2025-01-01T08:00:00.000Z`."""
	return normalize_timestamp(ts).isoformat(timespec="milliseconds") + "Z"


def _check_tp_level(tp_level: int) -> None:
	if tp_level not in TP_LEVELS:
		raise ValidationFailed(f"tp_level must be between 1 and 6, got {tp_level}")


def _lookup(db: Session, model, ident: int):
	if not fits_id_column(ident):
		return None
	return db.get(model, ident)


def _resolve_curriculum(db: Session, subject_id: int, dskp_item_id: int) -> None:
	subject = _lookup(db, Subject, subject_id)
	if subject is None:
		raise ValidationFailed(f"subject {subject_id} does not exist")
	item = _lookup(db, DskpItem, dskp_item_id)
	if item is None:
		raise ValidationFailed(f"DSKP item {dskp_item_id} does not exist")
	if item.subject_id != subject.id:
		raise ValidationFailed(f"DSKP item {dskp_item_id} does not belong to subject {subject_id}")


def _missing_students(db: Session, student_ids: Iterable[int]) -> List[int]:
	wanted = set(student_ids)
	if not wanted:
		return []
	found = set(db.execute(select(Student.id).where(Student.id.in_(wanted))).scalars())
	return sorted(wanted - found)


def _commit_or_discard(db: Session, store: EvidenceStore, staged: Sequence[StoredFile]) -> None:
	try:
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		store.discard(staged)
		raise


def record_assessment(
	db: Session,
	store: EvidenceStore,
	*,
	student_id: int,
	subject_id: int,
	dskp_item_id: int,
	tp_level: int,
	skills: Union[str, Iterable[str], None] = None,
	note: Optional[str] = None,
	timestamp: Optional[datetime] = None,
	evidence: Optional[Upload] = None,
) -> Assessment:
	"""Persist one assessment, storing its evidence file first when given."""
	_check_tp_level(tp_level)
	if _lookup(db, Student, student_id) is None:
		raise ValidationFailed(f"student {student_id} does not exist")
	_resolve_curriculum(db, subject_id, dskp_item_id)

	staged: List[StoredFile] = []
	if evidence is not None:
		staged.append(store.save_image(evidence))
	row = Assessment(
		student_id=student_id,
		subject_id=subject_id,
		dskp_item_id=dskp_item_id,
		tp_level=tp_level,
		evidence_url=staged[0].url if staged else None,
		note=note or "",
		timestamp=normalize_timestamp(timestamp),
	)
	row.set_skills(split_skills(skills))
	db.add(row)
	_commit_or_discard(db, store, staged)
	db.refresh(row)
	logger.info("Recorded assessment %s for student %s (TP%s)", row.id, student_id, tp_level)
	return row


def record_bulk(
	db: Session,
	store: EvidenceStore,
	*,
	subject_id: int,
	dskp_item_id: int,
	entries: Sequence[BulkEntry],
	timestamp: Optional[datetime] = None,
	evidence: Optional[Dict[int, Upload]] = None,
) -> BulkResult:
	"""Insert one assessment per entry in a single all-or-nothing transaction.

	Evidence is keyed by student id. Files are written before the transaction
	starts and removed again if it rolls back. Evidence for a student with no
	entry in the batch is not stored; its id is reported in the result.
	"""
	evidence = evidence or {}
	wanted = {e.student_id for e in entries}
	ignored = sorted(sid for sid in evidence if sid not in wanted)
	if not entries:
		return BulkResult(count=0, ignored_evidence=ignored)

	for e in entries:
		_check_tp_level(e.tp_level)
	_resolve_curriculum(db, subject_id, dskp_item_id)
	missing = _missing_students(db, wanted)
	if missing:
		raise ValidationFailed(f"unknown student ids: {', '.join(str(m) for m in missing)}")

	staged: Dict[int, StoredFile] = {}
	try:
		for sid, upload in evidence.items():
			if sid in wanted:
				staged[sid] = store.save_image(upload)
	except ValidationFailed:
		store.discard(staged.values())
		raise

	ts = normalize_timestamp(timestamp)
	try:
		for e in entries:
			f = staged.get(e.student_id)
			row = Assessment(
				student_id=e.student_id,
				subject_id=subject_id,
				dskp_item_id=dskp_item_id,
				tp_level=e.tp_level,
				evidence_url=f.url if f else None,
				note=e.note or "",
				timestamp=ts,
			)
			row.set_skills(split_skills(e.skills))
			db.add(row)
		db.flush()
	except SQLAlchemyError:
		db.rollback()
		store.discard(staged.values())
		logger.warning("Bulk insert of %d assessments rolled back", len(entries))
		raise
	_commit_or_discard(db, store, list(staged.values()))
	logger.info("Recorded %d assessments for subject %s, item %s", len(entries), subject_id, dskp_item_id)
	return BulkResult(count=len(entries), ignored_evidence=ignored)
