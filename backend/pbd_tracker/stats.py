from __future__ import annotations
from typing import Any, Dict, List, Mapping, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import TP_LEVELS, Assessment, SchoolClass, Student


def dashboard_stats(db: Session) -> Dict[str, Any]:
	"""Totals plus the TP histogram; levels with no assessments are left out."""
	total_classes = db.execute(select(func.count(SchoolClass.id))).scalar_one()
	total_students = db.execute(select(func.count(Student.id))).scalar_one()
	rows = db.execute(
		select(Assessment.tp_level, func.count(Assessment.id))
		.group_by(Assessment.tp_level)
		.order_by(Assessment.tp_level)
	).all()
	distribution = [{"tp_level": level, "count": count} for level, count in rows]
	return {
		"total_classes": total_classes,
		"total_students": total_students,
		"total_assessments": sum(d["count"] for d in distribution),
		"tp_distribution": distribution,
	}


def fill_tp_levels(counts: Mapping[int, int]) -> List[Dict[str, Any]]:
	return [{"name": f"TP{level}", "tp_level": level, "count": counts.get(level, 0)} for level in TP_LEVELS]


def analytics(rows: Sequence[Assessment]) -> Dict[str, Any]:
	"""Chart data for a filtered result set (rows arrive newest first)."""
	counts: Dict[int, int] = {}
	for a in rows:
		counts[a.tp_level] = counts.get(a.tp_level, 0) + 1
	timeline = [
		{
			"date": a.timestamp.date().isoformat(),
			"tp_level": a.tp_level,
			"student_name": a.student.name,
			"subject_name": a.subject.name,
		}
		for a in reversed(rows)
	]
	return {"tp_distribution": fill_tp_levels(counts), "timeline": timeline}
