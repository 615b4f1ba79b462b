from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)

class VoiceCloningError(AppError):
    """Failure of the clone pipeline, tagged with the error code returned to the caller."""

    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        super().__init__(message, status_code=status_code, user_message=code)

class ErrorHandler:
    @staticmethod
    def handle_combination_error(session_number, error: Exception) -> str:
        logger.error(f"Error combining chunks for session #{session_number}: {str(error)}")
        return f"Chunk combination failed for session #{session_number}"

    @staticmethod
    def handle_voice_delete_error(voice_id: str, error: Exception) -> str:
        logger.warning(f"Failed to delete voice {voice_id} (continuing): {str(error)}")
        return f"Voice {voice_id} could not be deleted"

    @staticmethod
    def handle_status_reset_error(therapist_id: str, error: Exception) -> str:
        logger.error(f"Failed to reset voice cloning status for {therapist_id}: {str(error)}")
        return "Voice cloning status could not be reset"
