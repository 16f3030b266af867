"""Filtered, joined views over recorded assessments.

Each filter kind is a small frozen dataclass that knows how to render itself as
a parameterized SQLAlchemy clause. `build_filters` turns raw query-string
values into a list of those predicates and `query_assessments` ANDs them
together over the assessment/student/subject/DSKP join, newest first.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import false, func, or_, select
from sqlalchemy.orm import Session, contains_eager, selectinload

from .models import Assessment, AssessmentSkill, DskpItem, Student, Subject, fits_id_column, join_skills


@dataclass(frozen=True)
class InClass:
	class_id: int

	def clause(self):
		return Student.class_id == self.class_id


@dataclass(frozen=True)
class ForStudent:
	student_id: int

	def clause(self):
		return Assessment.student_id == self.student_id


@dataclass(frozen=True)
class ForSubject:
	subject_id: int

	def clause(self):
		return Assessment.subject_id == self.subject_id


@dataclass(frozen=True)
class HasSkill:
	skill: str

	def clause(self):
		return Assessment.skills.any(func.lower(AssessmentSkill.name) == func.lower(self.skill))


@dataclass(frozen=True)
class TextSearch:
	text: str

	def clause(self):
		return or_(*[
			col.icontains(self.text, autoescape=True)
			for col in (Student.name, DskpItem.sk, DskpItem.sp, Assessment.note)
		])


@dataclass(frozen=True)
class NoMatch:
	"""Stands in for a filter whose value can never match, e.g. a malformed id."""
	reason: str

	def clause(self):
		return false()


Predicate = Union[InClass, ForStudent, ForSubject, HasSkill, TextSearch, NoMatch]


def _id_predicate(kind, field: str, raw: Any) -> Optional[Predicate]:
	if raw is None:
		return None
	if isinstance(raw, int):
		value = raw
	else:
		text = str(raw).strip()
		if not text:
			return None
		try:
			value = int(text)
		except ValueError:
			return NoMatch(f"{field}={text!r} is not an id")
	if not fits_id_column(value):
		return NoMatch(f"{field}={value} is out of range")
	return kind(value)


def build_filters(
	*,
	class_id: Any = None,
	student_id: Any = None,
	subject_id: Any = None,
	skill: Optional[str] = None,
	search: Optional[str] = None,
) -> List[Predicate]:
	"""Turn optional query-string values into predicates; blanks are wildcards."""
	predicates: List[Predicate] = []
	for kind, field, raw in (
		(InClass, "class_id", class_id),
		(ForStudent, "student_id", student_id),
		(ForSubject, "subject_id", subject_id),
	):
		p = _id_predicate(kind, field, raw)
		if p is not None:
			predicates.append(p)
	if skill and skill.strip():
		predicates.append(HasSkill(skill.strip()))
	if search and search.strip():
		predicates.append(TextSearch(search.strip()))
	return predicates


def query_assessments(db: Session, predicates: Sequence[Predicate] = ()) -> List[Assessment]:
	stmt = (
		select(Assessment)
		.join(Assessment.student)
		.join(Assessment.subject)
		.join(Assessment.dskp_item)
		.options(
			contains_eager(Assessment.student),
			contains_eager(Assessment.subject),
			contains_eager(Assessment.dskp_item),
			selectinload(Assessment.skills),
		)
		.order_by(Assessment.timestamp.desc(), Assessment.id.desc())
	)
	for p in predicates:
		stmt = stmt.where(p.clause())
	return list(db.execute(stmt).scalars().unique())


def assessment_row(a: Assessment) -> Dict[str, Any]:
	"""Flatten an assessment and its related names into the API row shape."""
	tags = a.skill_tags
	return {
		"id": a.id,
		"student_id": a.student_id,
		"subject_id": a.subject_id,
		"dskp_item_id": a.dskp_item_id,
		"class_id": a.student.class_id,
		"tp_level": a.tp_level,
		"skills": join_skills(tags),
		"skill_tags": tags,
		"evidence_url": a.evidence_url,
		"note": a.note or "",
		"timestamp": a.timestamp,
		"student_name": a.student.name,
		"subject_name": a.subject.name,
		"sk": a.dskp_item.sk,
		"sp": a.dskp_item.sp,
	}
