from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError
from ..models import Student, fits_id_column
from ..storage import EvidenceStore, Upload, get_evidence_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/students", tags=["students"])


class PhotoOut(BaseModel):
	photo_url: Optional[str] = None


@router.post("/{student_id}/photo", response_model=PhotoOut)
async def upload_photo(
	student_id: int,
	photo: UploadFile = File(...),
	db: Session = Depends(get_db),
	store: EvidenceStore = Depends(get_evidence_store),
):
	student = db.get(Student, student_id) if fits_id_column(student_id) else None
	if student is None:
		raise NotFoundError(f"student {student_id} not found")
	stored = store.save_image(Upload(photo.filename, photo.content_type, await photo.read()))
	previous = student.photo_url
	student.photo_url = stored.url
	try:
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		store.discard([stored])
		raise
	# Old photo is only removed once nothing points at it any more
	if previous and previous != stored.url:
		store.discard_url(previous)
	logger.info("Attached photo %s to student %s", stored.name, student_id)
	return PhotoOut(photo_url=stored.url)
