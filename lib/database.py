from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from supabase import create_client, Client

from lib.config import get_settings
from lib.models import TherapistVoiceState, TherapySession, VoiceCloningStatus

settings = get_settings()

PROFILE_COLUMNS = (
    'id, full_name, voice_cloning_status, voice_cloning_started_at, '
    'cloned_voice_id, voice_last_cloned_at, voice_cloning_session_count'
)
SESSION_COLUMNS = (
    'id, session_number, duration_seconds, voice_recording_url, '
    'total_chunks, uploaded_chunks, created_at'
)
# Rows whose status is anything but 'processing' (NULL included) may take the lock
LOCK_AVAILABLE_FILTER = 'voice_cloning_status.is.null,voice_cloning_status.neq.processing'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Supabase access for therapist voice state, sessions and audio chunks.

    Errors raised by the Supabase client (``postgrest.exceptions.APIError``)
    are propagated unchanged; callers decide how each one maps to a response.
    """

    def __init__(self, supabase_client: Optional[Client] = None):
        self.supabase: Client = supabase_client or create_client(
            settings.supabase_url,
            settings.supabase_service_role_key
        )
        self.profiles_table = settings.therapist_profiles_table
        self.sessions_table = settings.sessions_table
        self.chunks_table = settings.audio_chunks_table

    # --- Therapist voice state ---

    def get_voice_state(self, therapist_id: str) -> Optional[TherapistVoiceState]:
        result = self.supabase.table(self.profiles_table)\
            .select(PROFILE_COLUMNS)\
            .eq('id', therapist_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return TherapistVoiceState(**result.data[0])

    def acquire_processing_lock(self, therapist_id: str) -> Optional[TherapistVoiceState]:
        """Compare-and-swap the status to 'processing'.

        Returns the locked row, or None when no row matched (missing therapist
        or a concurrent request already holds the lock). A unique index on
        processing rows makes a racing writer fail with a 23505 error.
        """
        result = self.supabase.table(self.profiles_table)\
            .update({
                'voice_cloning_status': VoiceCloningStatus.PROCESSING.value,
                'voice_cloning_started_at': _now()
            })\
            .eq('id', therapist_id)\
            .or_(LOCK_AVAILABLE_FILTER)\
            .execute()
        if not result.data:
            return None
        return TherapistVoiceState(**result.data[0])

    def release_lock(self, therapist_id: str, status: VoiceCloningStatus) -> None:
        self.supabase.table(self.profiles_table)\
            .update({
                'voice_cloning_status': status.value,
                'voice_cloning_started_at': None
            })\
            .eq('id', therapist_id)\
            .execute()

    def mark_failed(self, therapist_id: str) -> None:
        self.release_lock(therapist_id, VoiceCloningStatus.FAILED)

    def save_cloned_voice(self, therapist_id: str, voice_id: str, session_count: int) -> None:
        self.supabase.table(self.profiles_table)\
            .update({
                'cloned_voice_id': voice_id,
                'voice_last_cloned_at': _now(),
                'voice_cloning_session_count': session_count,
                'voice_cloning_status': VoiceCloningStatus.COMPLETED.value,
                'voice_cloning_started_at': None
            })\
            .eq('id', therapist_id)\
            .execute()

    def find_stale_locks(self, started_before: datetime) -> List[TherapistVoiceState]:
        result = self.supabase.table(self.profiles_table)\
            .select(PROFILE_COLUMNS)\
            .eq('voice_cloning_status', VoiceCloningStatus.PROCESSING.value)\
            .lt('voice_cloning_started_at', started_before.isoformat())\
            .execute()
        return [TherapistVoiceState(**row) for row in result.data or []]

    # --- Sessions ---

    def get_completed_sessions(self, therapist_id: str) -> List[TherapySession]:
        """Completed sessions with a duration, newest first."""
        result = self.supabase.table(self.sessions_table)\
            .select(SESSION_COLUMNS)\
            .eq('therapist_profile_id', therapist_id)\
            .not_.is_('duration_seconds', 'null')\
            .eq('status', 'completed')\
            .order('created_at', desc=True)\
            .execute()
        return [TherapySession(**row) for row in result.data or []]

    def get_combined_sessions(self, therapist_id: str) -> List[TherapySession]:
        """Completed sessions that already have a combined recording, newest first."""
        result = self.supabase.table(self.sessions_table)\
            .select(SESSION_COLUMNS)\
            .eq('therapist_profile_id', therapist_id)\
            .not_.is_('duration_seconds', 'null')\
            .eq('status', 'completed')\
            .not_.is_('voice_recording_url', 'null')\
            .order('created_at', desc=True)\
            .execute()
        return [TherapySession(**row) for row in result.data or []]

    def get_session_audio_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.sessions_table)\
            .select('id, voice_recording_url, voice_recording_uploaded, chunks_combined_at, '
                    'total_chunks, uploaded_chunks')\
            .eq('id', session_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def update_session_audio(self, session_id: str, audio_url: str, size: int) -> None:
        self.supabase.table(self.sessions_table)\
            .update({
                'voice_recording_url': audio_url,
                'voice_recording_uploaded': True,
                'voice_recording_size': size,
                'chunks_combined_at': _now()
            })\
            .eq('id', session_id)\
            .execute()

    # --- Audio chunks ---

    def get_chunks(self, session_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.supabase.table(self.chunks_table)\
            .select('id, chunk_index, storage_path, file_size, status')\
            .eq('session_id', session_id)
        if status:
            query = query.eq('status', status)
        result = query.order('chunk_index').execute()
        return result.data or []

    def find_chunk(self, session_id: str, chunk_index: int) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.chunks_table)\
            .select('id')\
            .eq('session_id', session_id)\
            .eq('chunk_index', chunk_index)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def insert_chunk(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.chunks_table).insert(record).execute()
        return result.data[0] if result.data else None

    def mark_chunks_combined(self, session_id: str) -> None:
        self.supabase.table(self.chunks_table)\
            .update({'status': 'combined'})\
            .eq('session_id', session_id)\
            .eq('status', 'uploaded')\
            .execute()
