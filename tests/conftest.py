import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

# Mock Supabase before importing app
import supabase
def mock_create_client(*args, **kwargs):
    mock_client = MagicMock()
    mock_client.table = MagicMock()
    mock_client.storage = MagicMock()
    return mock_client

supabase.create_client = mock_create_client

# Now we can safely import the app
from api.routes import app
from api.services.voice_clone import VoiceCloningService
from lib.config import Settings
from lib.models import TherapistVoiceState, TherapySession, VoiceCloningStatus

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeDatabase:
    """In-memory stand-in for lib.database.Database.

    acquire_processing_lock is a compare-and-swap on the status, like the
    conditional update against Supabase. Set `errors[method_name]` to make a
    method raise.
    """

    def __init__(self):
        self.profiles = {}
        self.sessions = []
        self.errors = {}
        self.status_history = []

    def add_therapist(self, therapist_id='therapist-1', full_name='Dr. Jane Doe', **fields):
        self.profiles[therapist_id] = {'id': therapist_id, 'full_name': full_name, **fields}
        return self.profiles[therapist_id]

    def add_session(self, session_number, duration_seconds, therapist_id='therapist-1',
                    url='default', total_chunks=None, uploaded_chunks=None, status='completed'):
        if url == 'default':
            url = f"https://storage.example.com/session-{session_number}.webm"
        session = {
            'id': f"session-{session_number}",
            'therapist_profile_id': therapist_id,
            'session_number': session_number,
            'duration_seconds': duration_seconds,
            'voice_recording_url': url,
            'total_chunks': total_chunks,
            'uploaded_chunks': uploaded_chunks,
            'status': status,
            'created_at': BASE_TIME + timedelta(days=session_number)
        }
        self.sessions.append(session)
        return session

    def set_session_url(self, session_id, url):
        for session in self.sessions:
            if session['id'] == session_id:
                session['voice_recording_url'] = url

    def status_of(self, therapist_id='therapist-1'):
        return self.profiles[therapist_id].get('voice_cloning_status')

    def _check(self, name):
        if name in self.errors:
            raise self.errors[name]

    def _set_status(self, therapist_id, status, **fields):
        profile = self.profiles.get(therapist_id)
        if profile is None:
            return
        profile['voice_cloning_status'] = status
        profile.update(fields)
        self.status_history.append(status)

    def get_voice_state(self, therapist_id):
        self._check('get_voice_state')
        profile = self.profiles.get(therapist_id)
        return TherapistVoiceState(**profile) if profile else None

    def acquire_processing_lock(self, therapist_id):
        self._check('acquire_processing_lock')
        profile = self.profiles.get(therapist_id)
        if profile is None or profile.get('voice_cloning_status') == 'processing':
            return None
        self._set_status(therapist_id, 'processing', voice_cloning_started_at=datetime.now(timezone.utc))
        return TherapistVoiceState(**profile)

    def release_lock(self, therapist_id, status):
        self._check('release_lock')
        self._set_status(therapist_id, status.value, voice_cloning_started_at=None)

    def mark_failed(self, therapist_id):
        self._check('mark_failed')
        self.release_lock(therapist_id, VoiceCloningStatus.FAILED)

    def save_cloned_voice(self, therapist_id, voice_id, session_count):
        self._check('save_cloned_voice')
        self._set_status(
            therapist_id, 'completed',
            cloned_voice_id=voice_id,
            voice_cloning_session_count=session_count,
            voice_last_cloned_at=datetime.now(timezone.utc),
            voice_cloning_started_at=None
        )

    def _sessions_for(self, therapist_id):
        rows = [s for s in self.sessions
                if s['therapist_profile_id'] == therapist_id
                and s['status'] == 'completed'
                and s['duration_seconds'] is not None]
        return sorted(rows, key=lambda s: s['created_at'], reverse=True)

    def get_completed_sessions(self, therapist_id):
        self._check('get_completed_sessions')
        return [TherapySession(**s) for s in self._sessions_for(therapist_id)]

    def get_combined_sessions(self, therapist_id):
        self._check('get_combined_sessions')
        return [TherapySession(**s) for s in self._sessions_for(therapist_id) if s['voice_recording_url']]


@pytest.fixture
def test_client():
    app.config['TESTING'] = True
    return app.test_client()

@pytest.fixture
def fake_db():
    db = FakeDatabase()
    db.add_therapist()
    return db

@pytest.fixture
def voice_client():
    client = MagicMock()
    client.create_voice = AsyncMock(return_value='voice-new')
    client.delete_voice = AsyncMock(return_value=None)
    return client

@pytest.fixture
def audio_service():
    service = MagicMock()
    service.combine_segments = AsyncMock(return_value=b'combined-audio')
    return service

@pytest.fixture
def chunk_service(fake_db):
    """Combines chunks by writing a URL onto the fake session row."""
    service = MagicMock()

    def combine(session_id):
        url = f"https://storage.example.com/{session_id}/combined.webm"
        fake_db.set_session_url(session_id, url)
        return {'success': True, 'combined_audio_url': url, 'session_id': session_id}

    service.combine_session = MagicMock(side_effect=combine)
    return service

@pytest.fixture
def clone_settings():
    return Settings(
        min_audio_duration_ms=10_000,
        max_audio_duration_ms=1_200_000,
        truncation_threshold_ms=30_000
    )

@pytest.fixture
def cloning_service(fake_db, chunk_service, audio_service, voice_client, clone_settings):
    return VoiceCloningService(
        database=fake_db,
        chunk_service=chunk_service,
        audio_service=audio_service,
        voice_client=voice_client,
        settings=clone_settings
    )
