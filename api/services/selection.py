import logging
from enum import Enum
from typing import List, Optional, Tuple

from lib.error_handler import VoiceCloningError
from lib.models import SelectedAudioSegment, TherapySession, format_duration

logger = logging.getLogger(__name__)


class CloneAction(str, Enum):
    CLONE = 'clone'
    RECLONE = 'reclone'
    SKIP = 'skip'


def decide_clone_action(existing_voice_id: Optional[str], previous_count: int, current_count: int) -> CloneAction:
    """Skip when a voice exists and no new sessions arrived since it was cloned."""
    if not existing_voice_id:
        return CloneAction.CLONE
    if current_count <= previous_count:
        return CloneAction.SKIP
    return CloneAction.RECLONE


def select_sessions(
    sessions: List[TherapySession],
    min_duration_ms: int,
    max_duration_ms: int,
    truncation_threshold_ms: int
) -> Tuple[List[SelectedAudioSegment], int]:
    """Greedily pick sessions (already newest first) up to max_duration_ms.

    The session that would overflow the budget is included truncated to the
    remaining time, but only when strictly more than truncation_threshold_ms
    remains. Selection stops at that session either way.

    Returns the selected segments and their total duration in milliseconds.
    Raises INSUFFICIENT_AUDIO_DURATION when the total is below min_duration_ms.
    """
    selected: List[SelectedAudioSegment] = []
    total_ms = 0

    for session in sessions:
        session_ms = session.duration_ms
        if total_ms + session_ms <= max_duration_ms:
            selected.append(_segment(session, session.duration_seconds))
            total_ms += session_ms
            logger.info(f"Selected session #{session.session_number}: {format_duration(session_ms)}")
            continue

        remaining_ms = max_duration_ms - total_ms
        if remaining_ms > truncation_threshold_ms:
            selected.append(_segment(session, remaining_ms / 1000, truncated=True))
            total_ms = max_duration_ms
            logger.info(f"Partially selected session #{session.session_number}: "
                        f"{format_duration(remaining_ms)} (truncated from {format_duration(session_ms)})")
        else:
            logger.info(f"Skipped session #{session.session_number}: would exceed max duration "
                        f"(only {remaining_ms // 1000}s remaining)")
        break

    if len(selected) < len(sessions):
        skipped = [str(s.session_number) for s in sessions[len(selected):]]
        logger.info(f"Skipped {len(skipped)} older sessions: #{', #'.join(skipped)} "
                    f"(exceeded {max_duration_ms // 60000}m limit)")

    if total_ms < min_duration_ms:
        available_minutes = sum(s.duration_ms for s in sessions) / 60000
        required_minutes = min_duration_ms / 60000
        raise VoiceCloningError(
            'INSUFFICIENT_AUDIO_DURATION',
            f"Insufficient audio duration. Found {available_minutes:.2f} minutes, "
            f"but {required_minutes:.2f} minutes minimum required for voice cloning.",
            status_code=400
        )

    logger.info(f"Final selection: {len(selected)} sessions, {format_duration(total_ms)} total")
    return selected, total_ms


def _segment(session: TherapySession, duration_seconds: float, truncated: bool = False) -> SelectedAudioSegment:
    return SelectedAudioSegment(
        session_id=session.id,
        session_number=session.session_number,
        duration_seconds=duration_seconds,
        audio_url=session.voice_recording_url,
        truncated=truncated
    )
