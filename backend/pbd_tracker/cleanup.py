from __future__ import annotations
import logging
import time
from datetime import timedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Assessment, Student
from .storage import URL_PREFIX, EvidenceStore

logger = logging.getLogger(__name__)


def purge_orphaned_uploads(db: Session, store: EvidenceStore, grace: timedelta = timedelta(hours=1)) -> int:
	"""Delete uploaded files no student or assessment row points at.

	Files newer than `grace` are kept, since a request may have written one
	and not yet committed the row that references it.
	"""
	referenced = set()
	for url in db.execute(select(Student.photo_url).where(Student.photo_url.is_not(None))).scalars():
		referenced.add(url)
	for url in db.execute(select(Assessment.evidence_url).where(Assessment.evidence_url.is_not(None))).scalars():
		referenced.add(url)

	threshold = time.time() - grace.total_seconds()
	removed = 0
	for path in store.iter_files():
		if URL_PREFIX + path.name in referenced:
			continue
		if path.stat().st_mtime > threshold:
			continue
		path.unlink(missing_ok=True)
		removed += 1
	if removed:
		logger.info("Removed %d orphaned uploads from %s", removed, store.root)
	return removed
