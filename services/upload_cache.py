"""
Upload Cache
Holds uploaded CSV bytes between the upload, detect and process calls
"""
from typing import Callable, Dict, Optional
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from settings import UPLOAD_TTL_SECONDS
from utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class CachedUpload:
    file_id: str
    filename: str
    content: bytes
    stored_at: datetime

    @property
    def size(self) -> int:
        return len(self.content)

    def text(self) -> str:
        return self.content.decode("utf-8-sig", errors="replace")


class UploadCache:
    """In-memory upload store with a fixed retention window; expired entries are swept, never served."""

    def __init__(self, ttl_seconds: int = UPLOAD_TTL_SECONDS, clock: Callable[[], datetime] = utc_now):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, CachedUpload] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CachedUpload, now: datetime) -> bool:
        return (now - entry.stored_at).total_seconds() > self.ttl_seconds

    def put(self, filename: str, content: bytes) -> CachedUpload:
        self.sweep()
        entry = CachedUpload(
            file_id=str(uuid.uuid4()),
            filename=filename,
            content=content,
            stored_at=self.clock(),
        )
        self._entries[entry.file_id] = entry
        logger.info(f"Cached upload id={entry.file_id} filename={filename!r} size={entry.size}")
        return entry

    def get(self, file_id: str) -> Optional[CachedUpload]:
        entry = self._entries.get(file_id)
        if entry and self._expired(entry, self.clock()):
            self._entries.pop(file_id, None)
            logger.info(f"Upload id={file_id} expired")
            return None
        return entry

    def discard(self, file_id: str) -> None:
        self._entries.pop(file_id, None)

    def sweep(self) -> int:
        """Evict every expired entry; returns how many were dropped."""
        now = self.clock()
        expired = [fid for fid, entry in self._entries.items() if self._expired(entry, now)]
        for fid in expired:
            self._entries.pop(fid, None)
        if expired:
            logger.info(f"Swept {len(expired)} expired upload(s)")
        return len(expired)


upload_cache = UploadCache()


def get_upload_cache() -> UploadCache:
    return upload_cache
