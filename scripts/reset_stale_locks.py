import argparse
from datetime import datetime, timedelta, timezone

from lib.config import get_settings
from lib.database import Database

def reset_stale_locks(database: Database, minutes: int, dry_run: bool = False) -> list:
    """Reset therapists stuck in 'processing' for longer than `minutes` to 'failed'"""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    stale = database.find_stale_locks(cutoff)

    if not stale:
        print(f"No voice cloning locks older than {minutes} minutes.")
        return []

    for state in stale:
        print(f"Stale lock: {state.display_name} ({state.id}) started at {state.voice_cloning_started_at}")
        if not dry_run:
            database.mark_failed(state.id)
            print(f"Reset {state.id} to 'failed'")

    return [state.id for state in stale]

if __name__ == "__main__":
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Release voice cloning locks left behind by crashed requests")
    parser.add_argument('--minutes', type=int, default=settings.stale_lock_minutes)
    parser.add_argument('--dry-run', action='store_true')
    args = parser.parse_args()

    try:
        reset_stale_locks(Database(), args.minutes, dry_run=args.dry_run)
    except Exception as e:
        print(f"Error resetting stale locks: {str(e)}")
        raise
