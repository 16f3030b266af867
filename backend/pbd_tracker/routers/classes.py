from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..document_parser import DocumentParser, get_document_parser
from ..errors import NotFoundError, ValidationFailed
from ..models import SchoolClass, Student, Subject, fits_id_column

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classes", tags=["classes"])


class ClassCreate(BaseModel):
	year: str = ""
	name: str
	teacher_name: str = ""


class ClassOut(ClassCreate):
	model_config = ConfigDict(from_attributes=True)
	id: int


class StudentCreate(BaseModel):
	name: str
	notes: Optional[str] = ""


class StudentOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)
	id: int
	class_id: int
	name: str
	photo_url: Optional[str] = None
	notes: str = ""


class SubjectCreate(BaseModel):
	name: str


class SubjectOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)
	id: int
	class_id: int
	name: str


class Created(BaseModel):
	id: int


def _require_name(value: str, what: str) -> str:
	value = (value or "").strip()
	if not value:
		raise ValidationFailed(f"{what} name is required")
	return value


def _get_class(db: Session, class_id: int) -> SchoolClass:
	cls = db.get(SchoolClass, class_id) if fits_id_column(class_id) else None
	if cls is None:
		raise NotFoundError(f"class {class_id} not found")
	return cls


@router.get("", response_model=List[ClassOut])
def list_classes(db: Session = Depends(get_db)):
	return db.execute(select(SchoolClass).order_by(SchoolClass.id)).scalars().all()


@router.post("", response_model=Created)
def create_class(req: ClassCreate, db: Session = Depends(get_db)):
	row = SchoolClass(
		year=(req.year or "").strip(),
		name=_require_name(req.name, "class"),
		teacher_name=(req.teacher_name or "").strip(),
	)
	db.add(row)
	db.commit()
	logger.info("Created class %s (%s %s)", row.id, row.year, row.name)
	return Created(id=row.id)


@router.get("/{class_id}/students", response_model=List[StudentOut])
def list_students(class_id: int, db: Session = Depends(get_db)):
	if not fits_id_column(class_id):
		return []
	return db.execute(
		select(Student).where(Student.class_id == class_id).order_by(Student.id)
	).scalars().all()


@router.post("/{class_id}/students", response_model=Created)
def create_student(class_id: int, req: StudentCreate, db: Session = Depends(get_db)):
	_get_class(db, class_id)
	row = Student(class_id=class_id, name=_require_name(req.name, "student"), notes=req.notes or "")
	db.add(row)
	db.commit()
	return Created(id=row.id)


@router.post("/{class_id}/students/import", response_model=List[StudentOut])
async def import_students(
	class_id: int,
	file: UploadFile = File(...),
	db: Session = Depends(get_db),
	parser: DocumentParser = Depends(get_document_parser),
):
	_get_class(db, class_id)
	names = await parser.parse_student_list(await file.read(), file.content_type)
	rows = [Student(class_id=class_id, name=n, notes="") for n in names]
	db.add_all(rows)
	db.commit()
	logger.info("Imported %d students into class %s", len(rows), class_id)
	for r in rows:
		db.refresh(r)
	return rows


@router.get("/{class_id}/subjects", response_model=List[SubjectOut])
def list_subjects(class_id: int, db: Session = Depends(get_db)):
	if not fits_id_column(class_id):
		return []
	return db.execute(
		select(Subject).where(Subject.class_id == class_id).order_by(Subject.id)
	).scalars().all()


@router.post("/{class_id}/subjects", response_model=Created)
def create_subject(class_id: int, req: SubjectCreate, db: Session = Depends(get_db)):
	_get_class(db, class_id)
	row = Subject(class_id=class_id, name=_require_name(req.name, "subject"))
	db.add(row)
	db.commit()
	return Created(id=row.id)
