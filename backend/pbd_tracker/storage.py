from __future__ import annotations
import logging
import re
import time
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterable, Iterator, Optional

from PIL import Image, UnidentifiedImageError

from .errors import ValidationFailed
from .settings import settings

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class Upload:
	"""An uploaded file already read into memory."""
	filename: str
	content_type: Optional[str]
	data: bytes


@dataclass
class StoredFile:
	name: str
	path: Path

	@property
	def url(self) -> str:
		return URL_PREFIX + self.name


class EvidenceStore:
	"""Filesystem store for evidence and student photos.

	Files are written before the database row that references them is
	committed. Callers that fail to commit must `discard` what they staged;
	anything missed is picked up by the orphan sweep in `cleanup`.
	"""

	def __init__(self, root: str | Path, *, max_bytes: Optional[int] = None) -> None:
		self.root = Path(root)
		self.max_bytes = max_bytes

	def save_image(self, upload: Upload) -> StoredFile:
		if not upload.data:
			raise ValidationFailed(f"{upload.filename or 'upload'} is empty")
		if self.max_bytes is not None and len(upload.data) > self.max_bytes:
			raise ValidationFailed(f"{upload.filename or 'upload'} exceeds {self.max_bytes} bytes")
		try:
			with Image.open(BytesIO(upload.data)) as img:
				img.verify()
		except (UnidentifiedImageError, OSError, SyntaxError) as e:
			raise ValidationFailed(f"{upload.filename or 'upload'} is not a valid image: {e}")
		self.root.mkdir(parents=True, exist_ok=True)
		name = self._unique_name(upload.filename)
		path = self.root / name
		path.write_bytes(upload.data)
		logger.debug("Stored upload %s (%d bytes)", name, len(upload.data))
		return StoredFile(name=name, path=path)

	def discard(self, stored: Iterable[StoredFile]) -> None:
		for f in stored:
			try:
				f.path.unlink()
				logger.info("Discarded staged upload %s", f.name)
			except FileNotFoundError:
				pass

	def discard_url(self, url: Optional[str]) -> None:
		path = self.path_for_url(url)
		if path is not None:
			self.discard([StoredFile(name=path.name, path=path)])

	def path_for_url(self, url: Optional[str]) -> Optional[Path]:
		if not url or not url.startswith(URL_PREFIX):
			return None
		name = url[len(URL_PREFIX):]
		if not name or "/" in name or name in (".", ".."):
			return None
		return self.root / name

	def iter_files(self) -> Iterator[Path]:
		if not self.root.is_dir():
			return iter(())
		return (p for p in self.root.iterdir() if p.is_file())

	@staticmethod
	def _unique_name(original: Optional[str]) -> str:
		base = Path(original or "upload").name
		safe = _UNSAFE_CHARS.sub("_", base).strip("._") or "upload"
		return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe[-80:]}"


def get_evidence_store() -> EvidenceStore:
	return EvidenceStore(settings.upload_dir, max_bytes=settings.max_upload_mb * 1024 * 1024)
