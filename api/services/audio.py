import logging
from typing import List, Optional

import aiohttp

from lib.config import get_settings
from lib.error_handler import AppError
from lib.models import SelectedAudioSegment

logger = logging.getLogger(__name__)
settings = get_settings()

class AudioService:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.download_timeout_seconds)
        logger.info(f"Audio service initialized with download timeout: {self.timeout.total}s")

    async def combine_segments(self, segments: List[SelectedAudioSegment]) -> bytes:
        """Download every selected segment and join the raw bytes in selection order.

        Any failed download aborts the whole combination. Byte concatenation
        only yields playable audio for formats that tolerate it (e.g. MP3).
        """
        if not segments:
            raise AppError("No audio files could be processed", status_code=400)

        logger.info(f"Processing {len(segments)} audio files...")
        buffers = []
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            for i, segment in enumerate(segments):
                logger.info(f"Downloading session #{segment.session_number} audio ({i + 1}/{len(segments)})...")
                try:
                    audio_data = await self._download_audio(session, segment.audio_url)
                except Exception as e:
                    logger.error(f"Failed to process session #{segment.session_number}: {str(e)}")
                    raise AppError(
                        f"Failed to process audio for session {segment.session_number}: {str(e)}",
                        status_code=502
                    ) from e
                logger.info(f"Downloaded session #{segment.session_number}: {round(len(audio_data) / 1024)}KB")
                buffers.append(audio_data)

        total_kb = round(sum(len(b) for b in buffers) / 1024)
        logger.info(f"Successfully downloaded {len(buffers)} audio files, total size: {total_kb}KB")

        if len(buffers) == 1:
            logger.info(f"Single audio file - using session #{segments[0].session_number}")
            return buffers[0]

        logger.info(f"Concatenating {len(buffers)} audio files (most recent first)...")
        return b''.join(buffers)

    async def _download_audio(self, session, url: str) -> bytes:
        async with session.get(url) as response:
            if response.status != 200:
                raise AppError(f"Download failed with HTTP {response.status}", status_code=502)
            return await response.read()
