import logging
from datetime import datetime, timezone

from lib.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

class StorageService:
    """Session audio stored in a Supabase Storage bucket."""

    def __init__(self, supabase_client, bucket: str = None, prefix: str = None):
        self.supabase = supabase_client
        self.bucket = bucket or settings.audio_bucket
        self.prefix = prefix or settings.voice_storage_prefix
        logger.info(f"Storage service initialized for bucket: {self.bucket}")

    def _bucket(self):
        return self.supabase.storage.from_(self.bucket)

    def chunk_path(self, session_id: str, chunk_index: int) -> str:
        return f"{self.prefix}/{session_id}/chunk-{chunk_index:03d}.webm"

    def combined_path(self, session_id: str) -> str:
        timestamp = datetime.now(timezone.utc).isoformat().replace(':', '-').replace('.', '-')
        return f"{self.prefix}/{session_id}/combined-{timestamp}.webm"

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        logger.info(f"Uploading {len(data)} bytes to {self.bucket}/{path}")
        self._bucket().upload(
            path,
            data,
            file_options={'content-type': content_type, 'upsert': 'true' if upsert else 'false'}
        )

    def download(self, path: str) -> bytes:
        return self._bucket().download(path)

    def public_url(self, path: str) -> str:
        return self._bucket().get_public_url(path)
