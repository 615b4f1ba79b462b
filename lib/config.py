from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import os

load_dotenv()

class Settings(BaseSettings):
    # Supabase settings
    supabase_url: str = os.getenv('SUPABASE_URL', '')
    supabase_service_role_key: str = os.getenv('SUPABASE_SERVICE_ROLE_KEY', '')

    # ElevenLabs settings
    elevenlabs_api_key: str = os.getenv('ELEVENLABS_API_KEY', '')
    elevenlabs_base_url: str = 'https://api.elevenlabs.io/v1'

    # Storage layout
    audio_bucket: str = 'audio-recordings'
    voice_storage_prefix: str = 's2-therapist-voice'

    # Tables
    therapist_profiles_table: str = 's2_therapist_profiles'
    sessions_table: str = 's2_case_simulation_sessions'
    audio_chunks_table: str = 's2_audio_chunks'

    # Audio budget (ElevenLabs needs at least 10 seconds)
    min_audio_duration_ms: int = 10_000
    max_audio_duration_ms: int = 1_200_000
    truncation_threshold_ms: int = 30_000

    # Timeouts for outbound HTTP calls
    download_timeout_seconds: float = 60.0
    elevenlabs_timeout_seconds: float = 120.0

    # Locks older than this are considered abandoned by scripts/reset_stale_locks.py
    stale_lock_minutes: int = 30

def get_settings() -> Settings:
    return Settings()
