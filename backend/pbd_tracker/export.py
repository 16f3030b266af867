from __future__ import annotations
import csv
import io
from datetime import date
from typing import Iterable, Optional

from .models import Assessment, join_skills

CSV_HEADERS = ["Student", "Subject", "SK", "SP", "TP Level", "Skills", "Note", "Timestamp"]
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


def assessments_to_csv(rows: Iterable[Assessment]) -> str:
	"""Render assessments as CSV in the order given.

	Fields containing a comma, quote or newline are quoted with inner quotes
	doubled; everything else is written bare.
	"""
	buf = io.StringIO()
	writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
	writer.writerow(CSV_HEADERS)
	for a in rows:
		writer.writerow([
			a.student.name,
			a.subject.name,
			a.dskp_item.sk,
			a.dskp_item.sp,
			f"TP{a.tp_level}",
			join_skills(a.skill_tags),
			a.note or "",
			a.timestamp.strftime(TIMESTAMP_FORMAT) if a.timestamp else "",
		])
	return buf.getvalue()


def export_filename(today: Optional[date] = None) -> str:
	return f"PBD_Report_{(today or date.today()).isoformat()}.csv"
