import logging
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError

from lib.error_handler import AppError

logger = logging.getLogger(__name__)

class ChunkService:
    """Chunked session recordings: chunk upload, combination and status."""

    def __init__(self, database, storage_service):
        self.db = database
        self.storage = storage_service

    def upload_chunk(self, session_id: str, chunk_index: int, data: bytes,
                     content_type: str, purpose: Optional[str] = None) -> Dict[str, Any]:
        storage_path = self.storage.chunk_path(session_id, chunk_index)
        logger.info(f"Processing chunk {chunk_index} for session {session_id}: "
                    f"{len(data)} bytes, {content_type}, purpose={purpose or 'voice_chunk'}")

        if self.db.find_chunk(session_id, chunk_index):
            logger.info(f"Chunk {chunk_index} already exists for session {session_id}")
            return {
                'success': True,
                'message': 'Chunk already uploaded',
                'chunk_index': chunk_index,
                'session_id': session_id,
                'duplicate': True
            }

        record = {
            'session_id': session_id,
            'chunk_index': chunk_index,
            'storage_path': storage_path,
            'file_size': len(data),
            'mime_type': content_type
        }

        try:
            self.storage.upload(storage_path, data, content_type)
        except Exception as e:
            logger.error(f"Storage upload failed for chunk {chunk_index}: {str(e)}")
            # Keep a failed row so the chunk can be retried
            self.db.insert_chunk({**record, 'status': 'failed', 'retry_count': 1})
            raise AppError(str(e), status_code=500, user_message='Failed to upload audio chunk') from e

        try:
            self.db.insert_chunk({**record, 'status': 'uploaded'})
        except APIError as e:
            # The audio itself is stored, so the upload still counts
            logger.error(f"Failed to record chunk {chunk_index} for session {session_id}: {e.message}")

        logger.info(f"Chunk upload completed: {storage_path}")
        return {
            'success': True,
            'message': 'Chunk uploaded successfully',
            'chunk_index': chunk_index,
            'storage_path': storage_path,
            'file_size': len(data),
            'session_id': session_id
        }

    def combine_session(self, session_id: str) -> Dict[str, Any]:
        """Join a session's uploaded chunks into one recording and attach its URL to the session."""
        try:
            chunks = self.db.get_chunks(session_id, status='uploaded')
        except APIError as e:
            logger.error(f"Failed to fetch chunks for session {session_id}: {e.message}")
            raise AppError(e.message, status_code=500, user_message='Failed to fetch audio chunks') from e

        if not chunks:
            raise AppError(f"No uploaded chunks for session {session_id}", status_code=404,
                           user_message='No uploaded audio chunks found for this session')

        logger.info(f"Found {len(chunks)} chunks to combine for session {session_id}: "
                    f"indexes {[c['chunk_index'] for c in chunks]}")

        buffers = []
        for chunk in chunks:
            try:
                chunk_data = self.storage.download(chunk['storage_path'])
            except Exception as e:
                logger.error(f"Failed to download chunk {chunk['chunk_index']}: {str(e)}")
                continue
            buffers.append(chunk_data)
            logger.info(f"Chunk {chunk['chunk_index']} downloaded: {len(chunk_data)} bytes")

        if not buffers:
            raise AppError(f"None of {len(chunks)} chunks could be downloaded", status_code=500,
                           user_message='Failed to download any audio chunks')

        combined = b''.join(buffers)
        combined_path = self.storage.combined_path(session_id)
        logger.info(f"Combined {len(buffers)} chunks into {len(combined)} bytes, uploading to {combined_path}")

        try:
            self.storage.upload(combined_path, combined, 'audio/webm', upsert=True)
        except Exception as e:
            logger.error(f"Failed to upload combined audio: {str(e)}")
            raise AppError(str(e), status_code=500, user_message='Failed to upload combined audio') from e

        combined_url = self.storage.public_url(combined_path)

        try:
            self.db.update_session_audio(session_id, combined_url, len(combined))
        except APIError as e:
            logger.error(f"Failed to update session {session_id} with combined audio: {e.message}")

        try:
            self.db.mark_chunks_combined(session_id)
        except APIError as e:
            logger.error(f"Failed to mark chunks as combined for session {session_id}: {e.message}")

        logger.info(f"Audio combination completed for session {session_id}: {combined_url}")
        return {
            'success': True,
            'message': 'Audio chunks combined successfully',
            'combined_audio_url': combined_url,
            'combined_file_name': combined_path,
            'combined_file_size': len(combined),
            'chunks_combined': len(buffers),
            'total_chunks': len(chunks),
            'session_id': session_id
        }

    def combination_status(self, session_id: str) -> Dict[str, Any]:
        session = self.db.get_session_audio_info(session_id)
        if not session:
            raise AppError(f"Session {session_id} not found", status_code=404, user_message='Session not found')

        chunks = self.db.get_chunks(session_id)
        return {
            'success': True,
            'session_id': session_id,
            'voice_recording_url': session.get('voice_recording_url'),
            'voice_recording_uploaded': session.get('voice_recording_uploaded'),
            'chunks_combined_at': session.get('chunks_combined_at'),
            'is_combined': bool(session.get('chunks_combined_at')),
            'chunk_stats': {
                'total': len(chunks),
                'uploaded': sum(1 for c in chunks if c['status'] == 'uploaded'),
                'combined': sum(1 for c in chunks if c['status'] == 'combined'),
                'failed': sum(1 for c in chunks if c['status'] == 'failed')
            }
        }
