from __future__ import annotations
import logging
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..document_parser import DocumentParser, get_document_parser
from ..errors import NotFoundError, ValidationFailed
from ..models import DskpItem, Subject, fits_id_column
from .classes import Created

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subjects", tags=["dskp"])


class DskpCreate(BaseModel):
	sk: str
	sp: str


class DskpOut(DskpCreate):
	model_config = ConfigDict(from_attributes=True)
	id: int
	subject_id: int


def _get_subject(db: Session, subject_id: int) -> Subject:
	subject = db.get(Subject, subject_id) if fits_id_column(subject_id) else None
	if subject is None:
		raise NotFoundError(f"subject {subject_id} not found")
	return subject


@router.get("/{subject_id}/dskp", response_model=List[DskpOut])
def list_dskp(subject_id: int, db: Session = Depends(get_db)):
	if not fits_id_column(subject_id):
		return []
	return db.execute(
		select(DskpItem).where(DskpItem.subject_id == subject_id).order_by(DskpItem.id)
	).scalars().all()


@router.post("/{subject_id}/dskp", response_model=Created)
def create_dskp(subject_id: int, req: DskpCreate, db: Session = Depends(get_db)):
	_get_subject(db, subject_id)
	sk = (req.sk or "").strip()
	sp = (req.sp or "").strip()
	if not sk or not sp:
		raise ValidationFailed("sk and sp are required")
	row = DskpItem(subject_id=subject_id, sk=sk, sp=sp)
	db.add(row)
	db.commit()
	return Created(id=row.id)


@router.post("/{subject_id}/dskp/import", response_model=List[DskpOut])
async def import_dskp(
	subject_id: int,
	file: UploadFile = File(...),
	db: Session = Depends(get_db),
	parser: DocumentParser = Depends(get_document_parser),
):
	_get_subject(db, subject_id)
	pairs = await parser.parse_dskp(await file.read(), file.content_type)
	rows = [DskpItem(subject_id=subject_id, sk=p["sk"], sp=p["sp"]) for p in pairs]
	db.add_all(rows)
	db.commit()
	logger.info("Imported %d DSKP items into subject %s", len(rows), subject_id)
	for r in rows:
		db.refresh(r)
	return rows
