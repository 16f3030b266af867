from __future__ import annotations
from datetime import datetime
from typing import Iterable, List
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base

TP_LEVELS = (1, 2, 3, 4, 5, 6)

# Range of a SQLite INTEGER column
MIN_ID = -(2 ** 63)
MAX_ID = 2 ** 63 - 1


def fits_id_column(value: int) -> bool:
	return MIN_ID <= value <= MAX_ID


class SchoolClass(Base):
	__tablename__ = "classes"
	id = Column(Integer, primary_key=True, index=True)
	year = Column(String(64), nullable=False, default="")  # e.g. "Year 4"
	name = Column(String(128), nullable=False)
	teacher_name = Column(String(128), nullable=False, default="")

	students = relationship("Student", back_populates="school_class")
	subjects = relationship("Subject", back_populates="school_class")


class Student(Base):
	__tablename__ = "students"
	id = Column(Integer, primary_key=True, index=True)
	class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
	name = Column(String(128), nullable=False, index=True)
	photo_url = Column(String(512), nullable=True)
	notes = Column(Text, nullable=False, default="")

	school_class = relationship("SchoolClass", back_populates="students")


class Subject(Base):
	__tablename__ = "subjects"
	id = Column(Integer, primary_key=True, index=True)
	class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
	name = Column(String(128), nullable=False)

	school_class = relationship("SchoolClass", back_populates="subjects")
	dskp_items = relationship("DskpItem", back_populates="subject")


class DskpItem(Base):
	__tablename__ = "dskp_items"
	id = Column(Integer, primary_key=True, index=True)
	subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
	sk = Column(Text, nullable=False)  # Standard Kandungan (content standard)
	sp = Column(Text, nullable=False)  # Standard Pembelajaran (learning standard)

	subject = relationship("Subject", back_populates="dskp_items")


class Assessment(Base):
	__tablename__ = "assessments"
	id = Column(Integer, primary_key=True, index=True)
	student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
	subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
	dskp_item_id = Column(Integer, ForeignKey("dskp_items.id"), nullable=False)
	tp_level = Column(Integer, nullable=False)
	evidence_url = Column(String(512), nullable=True)
	note = Column(Text, nullable=False, default="")
	timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

	student = relationship("Student")
	subject = relationship("Subject")
	dskp_item = relationship("DskpItem")
	skills = relationship(
		"AssessmentSkill",
		order_by="AssessmentSkill.position",
		cascade="all, delete-orphan",
		back_populates="assessment",
	)

	__table_args__ = (
		CheckConstraint("tp_level BETWEEN 1 AND 6", name="ck_assessment_tp_level"),
	)

	@property
	def skill_tags(self) -> List[str]:
		return [s.name for s in self.skills]

	def set_skills(self, names: Iterable[str]) -> None:
		self.skills = [AssessmentSkill(position=i, name=n) for i, n in enumerate(names)]


class AssessmentSkill(Base):
	__tablename__ = "assessment_skills"
	id = Column(Integer, primary_key=True)
	assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
	position = Column(Integer, nullable=False, default=0)
	name = Column(String(64), nullable=False, index=True)

	assessment = relationship("Assessment", back_populates="skills")

	__table_args__ = (
		UniqueConstraint("assessment_id", "position", name="uq_assessment_skill_position"),
	)


def split_skills(raw: str | Iterable[str] | None) -> List[str]:
	"""Normalize a comma-joined string (or list) of skill tags.

	Blank entries are dropped and duplicates are removed case-insensitively,
	keeping the first spelling and order seen.
	"""
	if raw is None:
		return []
	parts = raw.split(",") if isinstance(raw, str) else list(raw)
	seen = set()
	tags: List[str] = []
	for part in parts:
		name = str(part).strip()
		if not name or name.lower() in seen:
			continue
		seen.add(name.lower())
		tags.append(name)
	return tags


def join_skills(tags: Iterable[str]) -> str:
	return ",".join(tags)
