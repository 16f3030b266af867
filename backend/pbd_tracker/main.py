from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .db import Base, SessionLocal, engine, ensure_schema
from .cleanup import purge_orphaned_uploads
from .errors import add_error_handlers
from .middleware import TimingMiddleware
from .settings import settings
from .storage import get_evidence_store
from .routers import health, classes, students, subjects
from .routers import assessments
from .routers import documents
from .routers import stats
import asyncio
import logging

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

app = FastAPI(title="PBD Tracker API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.add_middleware(TimingMiddleware)
add_error_handlers(app)

app.include_router(health.router)
app.include_router(classes.router)
app.include_router(students.router)
app.include_router(subjects.router)
app.include_router(assessments.router)
app.include_router(documents.router)
app.include_router(stats.router)

# Uploaded photos and evidence, addressed by the URLs stored on rows
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


def _sweep_orphans() -> None:
	db = SessionLocal()
	try:
		purge_orphaned_uploads(db, get_evidence_store(), grace=timedelta(minutes=settings.orphan_grace_minutes))
	finally:
		db.close()


async def _cleanup_watcher(interval_hours: int):
	while True:
		await asyncio.sleep(interval_hours * 60 * 60)
		try:
			_sweep_orphans()
		except Exception:
			logger.exception("Orphan upload sweep failed")


@app.on_event("startup")
async def startup_event():
	Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	ensure_schema(engine)
	try:
		_sweep_orphans()
	except Exception:
		logger.exception("Orphan upload sweep failed")
	if settings.cleanup_interval_hours > 0:
		app.state.cleanup_task = asyncio.create_task(_cleanup_watcher(settings.cleanup_interval_hours))


@app.on_event("shutdown")
async def shutdown_event():
	task = getattr(app.state, "cleanup_task", None)
	if task is None:
		return
	task.cancel()
	try:
		await task
	except asyncio.CancelledError:
		pass
	app.state.cleanup_task = None
