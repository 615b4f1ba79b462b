from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class VoiceCloningStatus(str, Enum):
    NONE = 'none'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class TherapistVoiceState(BaseModel):
    """Row of the therapist profile table that carries the cloning lock."""
    id: str
    full_name: Optional[str] = None
    voice_cloning_status: Optional[VoiceCloningStatus] = None
    voice_cloning_started_at: Optional[datetime] = None
    cloned_voice_id: Optional[str] = None
    voice_last_cloned_at: Optional[datetime] = None
    voice_cloning_session_count: Optional[int] = None

    @property
    def is_processing(self) -> bool:
        return self.voice_cloning_status == VoiceCloningStatus.PROCESSING

    @property
    def display_name(self) -> str:
        return self.full_name or self.id


class TherapySession(BaseModel):
    id: str
    session_number: Optional[int] = None
    duration_seconds: float
    voice_recording_url: Optional[str] = None
    total_chunks: Optional[int] = None
    uploaded_chunks: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def has_combined_audio(self) -> bool:
        return bool(self.voice_recording_url)

    @property
    def has_all_chunks(self) -> bool:
        return bool(self.total_chunks and self.uploaded_chunks
                    and self.total_chunks == self.uploaded_chunks)

    @property
    def duration_ms(self) -> int:
        return int(self.duration_seconds * 1000)


class SelectedAudioSegment(BaseModel):
    session_id: str
    session_number: Optional[int] = None
    duration_seconds: float
    audio_url: str
    truncated: bool = False

    @property
    def duration_ms(self) -> int:
        return int(self.duration_seconds * 1000)


class CloneResult(BaseModel):
    """Outcome of one clone request, shaped like the JSON response."""
    success: bool
    skipped: Optional[bool] = None
    voice_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    sessions_used: Optional[int] = None
    audio_duration_used: Optional[str] = None
    session_numbers: Optional[str] = None
    sessions_available: Optional[int] = None
    sessions_in_last_clone: Optional[int] = None
    status_code: int = 200

    def to_response(self) -> Dict[str, Any]:
        body = self.model_dump(exclude={'status_code'}, exclude_none=True)
        # voice_id is always present on skips, even when null
        if self.skipped and 'voice_id' not in body:
            body['voice_id'] = None
        return body


def format_duration(duration_ms: int) -> str:
    """Render milliseconds as '<minutes>m <seconds>s'."""
    return f"{duration_ms // 60000}m {(duration_ms % 60000) // 1000}s"
