from typing import Optional
import logging

import aiohttp

from lib.config import get_settings
from lib.error_handler import AppError

settings = get_settings()
logger = logging.getLogger(__name__)

class ElevenLabsClient:
    """Create and delete instant voice clones on the ElevenLabs API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key
        self.base_url = (base_url or settings.elevenlabs_base_url).rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.elevenlabs_timeout_seconds)

    def _headers(self) -> dict:
        if not self.api_key:
            raise AppError("ELEVENLABS_API_KEY environment variable is required", status_code=500)
        return {'xi-api-key': self.api_key}

    async def create_voice(self, audio: bytes, therapist_name: str) -> str:
        """Upload audio as a new cloned voice and return its voice_id."""
        headers = self._headers()
        logger.info(f"Preparing voice clone for \"{therapist_name}\" ({round(len(audio) / 1024)}KB)")

        form = aiohttp.FormData()
        form.add_field('files', audio, filename='voice_sample.mp3', content_type='audio/mpeg')
        form.add_field('name', f"{therapist_name} - AI Clone")
        form.add_field('description', f"Voice clone of therapist {therapist_name} for AI simulation")
        form.add_field('remove_background_noise', 'true')

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(f"{self.base_url}/voices/add", data=form, headers=headers) as response:
                logger.info(f"ElevenLabs API response: {response.status}")
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(f"ElevenLabs API error: {error_text}")
                    raise AppError(f"ElevenLabs API error ({response.status}): {error_text}", status_code=502)
                result = await response.json()

        logger.info(f"ElevenLabs response: voice_id={result.get('voice_id')}, "
                    f"requires_verification={result.get('requires_verification')}")
        voice_id = result.get('voice_id')
        if not voice_id:
            raise AppError("ElevenLabs API did not return a voice_id", status_code=502)
        return voice_id

    async def delete_voice(self, voice_id: str) -> None:
        headers = self._headers()
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.delete(f"{self.base_url}/voices/{voice_id}", headers=headers) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise AppError(
                        f"Failed to delete voice from ElevenLabs ({response.status}): {error_text}",
                        status_code=502
                    )
        logger.info(f"Deleted ElevenLabs voice {voice_id}")
