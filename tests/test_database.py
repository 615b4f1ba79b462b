from datetime import datetime, timezone
from unittest.mock import MagicMock

from lib.database import LOCK_AVAILABLE_FILTER, Database
from lib.models import VoiceCloningStatus

def make_database():
    client = MagicMock()
    return Database(supabase_client=client), client

def test_acquire_lock_is_conditional_update():
    db, client = make_database()
    chain = client.table.return_value.update.return_value.eq.return_value.or_.return_value
    chain.execute.return_value.data = [{'id': 'therapist-1', 'voice_cloning_status': 'processing'}]

    state = db.acquire_processing_lock('therapist-1')

    assert state.is_processing
    client.table.assert_called_with('s2_therapist_profiles')
    payload = client.table.return_value.update.call_args.args[0]
    assert payload['voice_cloning_status'] == 'processing'
    assert payload['voice_cloning_started_at']
    client.table.return_value.update.return_value.eq.assert_called_with('id', 'therapist-1')
    client.table.return_value.update.return_value.eq.return_value.or_.assert_called_with(LOCK_AVAILABLE_FILTER)

def test_acquire_lock_returns_none_when_nothing_updated():
    db, client = make_database()
    chain = client.table.return_value.update.return_value.eq.return_value.or_.return_value
    chain.execute.return_value.data = []

    assert db.acquire_processing_lock('therapist-1') is None

def test_get_voice_state_missing_row():
    db, client = make_database()
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    chain.execute.return_value.data = []

    assert db.get_voice_state('nobody') is None

def test_release_lock_clears_started_at():
    db, client = make_database()

    db.release_lock('therapist-1', VoiceCloningStatus.FAILED)

    payload = client.table.return_value.update.call_args.args[0]
    assert payload == {'voice_cloning_status': 'failed', 'voice_cloning_started_at': None}

def test_save_cloned_voice_marks_completed():
    db, client = make_database()

    db.save_cloned_voice('therapist-1', 'voice-123', 4)

    payload = client.table.return_value.update.call_args.args[0]
    assert payload['cloned_voice_id'] == 'voice-123'
    assert payload['voice_cloning_session_count'] == 4
    assert payload['voice_cloning_status'] == 'completed'
    assert payload['voice_cloning_started_at'] is None

def test_find_stale_locks_filters_by_start_time():
    db, client = make_database()
    chain = client.table.return_value.select.return_value.eq.return_value.lt.return_value
    chain.execute.return_value.data = [{'id': 'therapist-1', 'voice_cloning_status': 'processing'}]
    cutoff = datetime(2025, 1, 1, tzinfo=timezone.utc)

    stale = db.find_stale_locks(cutoff)

    assert [s.id for s in stale] == ['therapist-1']
    client.table.return_value.select.return_value.eq.return_value.lt.assert_called_with(
        'voice_cloning_started_at', cutoff.isoformat())
