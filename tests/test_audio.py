import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from api.services.audio import AudioService
from lib.error_handler import AppError
from lib.models import SelectedAudioSegment

class AsyncContextManager:
    def __init__(self, response):
        self.response = response
    async def __aenter__(self):
        return self.response
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

def make_response(status, body=b''):
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)
    return response

def segment(number):
    return SelectedAudioSegment(
        session_id=f"session-{number}",
        session_number=number,
        duration_seconds=60,
        audio_url=f"https://storage.example.com/session-{number}.mp3"
    )

@pytest.mark.asyncio
async def test_concatenates_in_selection_order():
    service = AudioService(timeout=5)
    with patch.object(AudioService, '_download_audio', AsyncMock(side_effect=[b'newest-', b'older'])) as download:
        audio = await service.combine_segments([segment(2), segment(1)])

    assert audio == b'newest-older'
    urls = [call.args[1] for call in download.await_args_list]
    assert urls == [segment(2).audio_url, segment(1).audio_url]

@pytest.mark.asyncio
async def test_single_segment_returned_unmodified():
    service = AudioService(timeout=5)
    payload = b'only-session'
    with patch.object(AudioService, '_download_audio', AsyncMock(return_value=payload)):
        audio = await service.combine_segments([segment(1)])

    assert audio is payload

@pytest.mark.asyncio
async def test_any_download_failure_aborts():
    service = AudioService(timeout=5)
    failing = AsyncMock(side_effect=[b'first', AppError('Download failed with HTTP 403')])
    with patch.object(AudioService, '_download_audio', failing):
        with pytest.raises(AppError) as exc_info:
            await service.combine_segments([segment(2), segment(1)])

    assert 'session 1' in exc_info.value.message
    assert 'HTTP 403' in exc_info.value.message

@pytest.mark.asyncio
async def test_empty_selection_is_rejected():
    with pytest.raises(AppError):
        await AudioService(timeout=5).combine_segments([])

@pytest.mark.asyncio
async def test_download_checks_http_status():
    session = MagicMock()
    session.get = MagicMock(return_value=AsyncContextManager(make_response(404)))

    with pytest.raises(AppError) as exc_info:
        await AudioService(timeout=5)._download_audio(session, 'https://storage.example.com/missing.mp3')
    assert 'HTTP 404' in exc_info.value.message

@pytest.mark.asyncio
async def test_download_returns_body():
    session = MagicMock()
    session.get = MagicMock(return_value=AsyncContextManager(make_response(200, b'mp3-bytes')))

    audio = await AudioService(timeout=5)._download_audio(session, 'https://storage.example.com/a.mp3')
    assert audio == b'mp3-bytes'
