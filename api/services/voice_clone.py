import logging
from typing import List, Optional

from postgrest.exceptions import APIError

from lib.config import Settings, get_settings
from lib.error_handler import ErrorHandler, VoiceCloningError
from lib.models import (
    CloneResult,
    TherapistVoiceState,
    TherapySession,
    VoiceCloningStatus,
    format_duration,
)
from .selection import CloneAction, decide_clone_action, select_sessions

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'


class LockHeldError(Exception):
    """Another request is already cloning this therapist's voice."""

    def __init__(self, voice_id: Optional[str] = None):
        self.voice_id = voice_id
        super().__init__('Voice cloning already in progress')


class LockCheckError(VoiceCloningError):
    """Failed before this request tried to take the lock, so the status is left alone."""


def _is_unique_violation(error: APIError) -> bool:
    return error.code == UNIQUE_VIOLATION or 'unique constraint' in (error.message or '')


def _describe(error: Exception) -> str:
    return error.message if isinstance(error, APIError) else str(error)


class VoiceCloningService:
    """Builds an ElevenLabs voice clone from a therapist's recorded sessions.

    One call runs the whole pipeline in order: take the per-therapist lock,
    collect sessions with combined audio (combining chunked recordings on the
    way), decide whether a (re)clone is needed, select audio under the duration
    budget, download and join it, create the voice and persist the outcome.

    The lock is a status column flipped with a conditional update and backed by
    a unique index, so racing requests across processes are resolved by the
    database. Whatever happens after the lock is taken, the status ends up
    'completed' or 'failed', never 'processing'.
    """

    def __init__(self, database, chunk_service, audio_service, voice_client,
                 settings: Optional[Settings] = None):
        self.db = database
        self.chunks = chunk_service
        self.audio = audio_service
        self.voices = voice_client
        self.settings = settings or get_settings()
        self.error_handler = ErrorHandler()

    async def clone_voice(self, therapist_id: Optional[str]) -> CloneResult:
        if not therapist_id:
            logger.info("Missing therapist profile ID")
            return CloneResult(
                success=False,
                error='MISSING_THERAPIST_ID',
                message='Therapist profile ID is required',
                status_code=400
            )

        logger.info(f"Starting voice cloning process for therapist: {therapist_id}")
        try:
            return await self._clone(therapist_id)
        except LockHeldError as e:
            logger.info(f"Voice cloning already in progress for therapist {therapist_id}, skipping duplicate request")
            return CloneResult(
                success=True,
                skipped=True,
                voice_id=e.voice_id,
                message='Voice cloning already in progress'
            )
        except LockCheckError as e:
            logger.error(f"Voice cloning could not start with {e.code}: {e.message}")
            return CloneResult(success=False, error=e.code, message=e.message, status_code=e.status_code)
        except VoiceCloningError as e:
            logger.error(f"Voice cloning failed with {e.code}: {e.message}")
            self._reset_status(therapist_id)
            return CloneResult(success=False, error=e.code, message=e.message, status_code=e.status_code)
        except Exception as e:
            logger.error(f"Voice cloning process failed: {str(e)}", exc_info=True)
            self._reset_status(therapist_id)
            return CloneResult(
                success=False,
                error='VOICE_CLONING_FAILED',
                message=str(e) or 'Unknown error occurred during voice cloning',
                status_code=500
            )

    async def _clone(self, therapist_id: str) -> CloneResult:
        state = self._acquire_lock(therapist_id)
        logger.info(f"Lock acquired for therapist: {state.display_name}")

        sessions = self._collect_sessions(state)
        self._log_sessions(sessions)

        previous_count = state.voice_cloning_session_count or 0
        current_count = len(sessions)
        action = decide_clone_action(state.cloned_voice_id, previous_count, current_count)
        logger.info(f"Re-cloning decision: existing voice={state.cloned_voice_id or 'none'}, "
                    f"previous sessions={previous_count}, current sessions={current_count}, action={action.value}")

        if action == CloneAction.SKIP:
            self.db.release_lock(therapist_id, VoiceCloningStatus.COMPLETED)
            logger.info("Voice cloning skipped: voice already exists and no new audio material")
            return CloneResult(
                success=True,
                skipped=True,
                voice_id=state.cloned_voice_id,
                message='Voice already exists and no new audio material available',
                sessions_available=current_count,
                sessions_in_last_clone=previous_count
            )

        selected, total_ms = select_sessions(
            sessions,
            min_duration_ms=self.settings.min_audio_duration_ms,
            max_duration_ms=self.settings.max_audio_duration_ms,
            truncation_threshold_ms=self.settings.truncation_threshold_ms
        )

        if action == CloneAction.RECLONE:
            logger.info(f"Re-cloning: {current_count - previous_count} new sessions available, "
                        f"deleting existing voice {state.cloned_voice_id}")
            await self._delete_voice_quietly(state.cloned_voice_id)

        audio = await self.audio.combine_segments(selected)
        voice_id = await self.voices.create_voice(audio, state.display_name)
        logger.info(f"Voice successfully cloned with ID: {voice_id}")

        try:
            self.db.save_cloned_voice(therapist_id, voice_id, current_count)
        except Exception as e:
            logger.error(f"Database update failed, cleaning up voice {voice_id}: {str(e)}")
            await self._delete_voice_quietly(voice_id)
            raise VoiceCloningError(
                'DATABASE_UPDATE_FAILED',
                f"Voice created but failed to save to database: {str(e)}"
            ) from e

        logger.info(f"Voice cloning completed: {len(selected)} sessions, {format_duration(total_ms)} audio, "
                    f"voice ID: {voice_id}")
        return CloneResult(
            success=True,
            voice_id=voice_id,
            message=f"Voice clone created successfully for {state.display_name}",
            audio_duration_used=format_duration(total_ms),
            sessions_used=len(selected),
            session_numbers=', '.join(str(s.session_number) for s in selected)
        )

    def _acquire_lock(self, therapist_id: str) -> TherapistVoiceState:
        try:
            current = self.db.get_voice_state(therapist_id)
        except Exception as e:
            raise LockCheckError('LOCK_FAILED', f"Failed to start voice cloning: {_describe(e)}") from e

        if current is None:
            raise LockCheckError('THERAPIST_NOT_FOUND', f"Therapist profile {therapist_id} not found",
                                 status_code=404)
        if current.is_processing:
            raise LockHeldError(current.cloned_voice_id)

        try:
            locked = self.db.acquire_processing_lock(therapist_id)
        except APIError as e:
            if _is_unique_violation(e):
                logger.info("Lock blocked by database constraint")
                raise LockHeldError(self._current_voice_id(therapist_id)) from e
            raise VoiceCloningError('LOCK_FAILED', f"Failed to start voice cloning: {e.message}") from e

        if locked is None:
            # Lost the race between the status read and the conditional update
            raise LockHeldError(self._current_voice_id(therapist_id))
        return locked

    def _current_voice_id(self, therapist_id: str) -> Optional[str]:
        try:
            state = self.db.get_voice_state(therapist_id)
        except Exception as e:
            logger.warning(f"Could not re-read voice state for {therapist_id}: {_describe(e)}")
            return None
        return state.cloned_voice_id if state else None

    def _collect_sessions(self, state: TherapistVoiceState) -> List[TherapySession]:
        try:
            sessions = self.db.get_completed_sessions(state.id)
        except APIError as e:
            raise VoiceCloningError('SESSIONS_QUERY_FAILED', f"Failed to retrieve sessions: {e.message}") from e
        logger.info(f"Found {len(sessions)} completed sessions")

        with_audio = []
        for session in sessions:
            if session.has_combined_audio:
                logger.info(f"Session #{session.session_number}: has combined audio")
                with_audio.append(session)
            elif session.has_all_chunks:
                logger.info(f"Session #{session.session_number}: has {session.uploaded_chunks}/"
                            f"{session.total_chunks} chunks but not combined yet")
                with_audio.append(session)
            else:
                logger.info(f"Session #{session.session_number}: no audio available "
                            f"({session.uploaded_chunks or 0}/{session.total_chunks or 0} chunks)")

        if not with_audio:
            raise VoiceCloningError(
                'NO_AUDIO_SESSIONS',
                f"No completed audio sessions found for {state.display_name}. "
                "Audio sessions are required for voice cloning.",
                status_code=400
            )

        needing_combination = [s for s in with_audio if not s.has_combined_audio]
        if needing_combination:
            self._combine_chunks(needing_combination)

        # The combination results are not trusted; read the sessions back
        try:
            refreshed = self.db.get_combined_sessions(state.id)
        except APIError as e:
            raise VoiceCloningError('SESSION_REFRESH_FAILED', f"Failed to refresh session data: {e.message}") from e

        if not refreshed:
            raise VoiceCloningError(
                'NO_COMBINED_AUDIO',
                "No sessions with combined audio found after refresh. Audio combination may have failed.",
                status_code=400
            )
        return refreshed

    def _combine_chunks(self, sessions: List[TherapySession]) -> None:
        logger.info(f"Found {len(sessions)} sessions that need chunk combining")
        combined_ids = []
        for session in sessions:
            logger.info(f"Combining chunks for session #{session.session_number} ({session.id})")
            try:
                result = self.chunks.combine_session(session.id)
            except Exception as e:
                self.error_handler.handle_combination_error(session.session_number, e)
                continue
            logger.info(f"Chunks combined for session #{session.session_number}: {result['combined_audio_url']}")
            combined_ids.append(session.id)
        logger.info(f"Chunk combining complete: {len(combined_ids)}/{len(sessions)} successful")

    def _log_sessions(self, sessions: List[TherapySession]) -> None:
        logger.info(f"Using {len(sessions)} sessions with combined audio:")
        for i, session in enumerate(sessions):
            created = session.created_at.date().isoformat() if session.created_at else 'unknown date'
            logger.info(f"  {i + 1}. Session #{session.session_number}: "
                        f"{format_duration(session.duration_ms)} - {created}")
        total_ms = sum(s.duration_ms for s in sessions)
        logger.info(f"Total available audio: {format_duration(total_ms)}")

    async def _delete_voice_quietly(self, voice_id: str) -> None:
        try:
            await self.voices.delete_voice(voice_id)
        except Exception as e:
            self.error_handler.handle_voice_delete_error(voice_id, e)

    def _reset_status(self, therapist_id: str) -> None:
        try:
            logger.info(f"Resetting voice_cloning_status to 'failed' for {therapist_id} to allow retry")
            self.db.mark_failed(therapist_id)
        except Exception as e:
            self.error_handler.handle_status_reset_error(therapist_id, e)
