from flask import Flask, request, jsonify
import logging
import sys

from lib.config import get_settings
from lib.database import Database
from lib.elevenlabs_client import ElevenLabsClient
from lib.error_handler import AppError

from .services.audio import AudioService
from .services.chunks import ChunkService
from .services.storage import StorageService
from .services.voice_clone import VoiceCloningService

# Configure detailed logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
    force=True  # Ensure our config takes precedence
)

logger = logging.getLogger(__name__)
settings = get_settings()

app = Flask(__name__)

logger.info("Initializing Supabase client...")
try:
    database = Database()
    logger.info("Supabase client initialized successfully")
except Exception as e:
    logger.error(f"Error initializing Supabase client: {str(e)}")
    raise

logger.info("Initializing services...")
storage_service = StorageService(supabase_client=database.supabase)
chunk_service = ChunkService(database=database, storage_service=storage_service)
audio_service = AudioService()
voice_client = ElevenLabsClient()
voice_cloning_service = VoiceCloningService(
    database=database,
    chunk_service=chunk_service,
    audio_service=audio_service,
    voice_client=voice_client,
    settings=settings
)
logger.info("All services initialized successfully")


def app_error_response(error: AppError, **extra):
    return jsonify({
        'success': False,
        'error': error.user_message,
        'details': error.message,
        **extra
    }), error.status_code


@app.route('/', methods=['GET'])
def root():
    """Basic health check"""
    return {'status': 'healthy'}


@app.route('/api/admin/s2/clone-voice', methods=['POST'])
async def clone_voice():
    body = request.get_json(silent=True)
    therapist_id = body.get('therapistProfileId') if isinstance(body, dict) else None

    result = await voice_cloning_service.clone_voice(therapist_id)
    return jsonify(result.to_response()), result.status_code


@app.route('/api/s2/voice-upload-chunk', methods=['POST'])
def upload_chunk():
    logger.info("Received chunk upload request")
    audio_file = request.files.get('audio')
    session_id = request.form.get('session_id')
    chunk_index = request.form.get('chunk_index', '')

    if not audio_file:
        return jsonify({'error': 'No audio file provided'}), 400
    if not session_id:
        return jsonify({'error': 'Session ID is required'}), 400
    if not chunk_index.isdigit():
        logger.error(f"Invalid chunk index: {chunk_index}")
        return jsonify({'error': 'Valid chunk index is required'}), 400

    try:
        result = chunk_service.upload_chunk(
            session_id=session_id,
            chunk_index=int(chunk_index),
            data=audio_file.read(),
            content_type=audio_file.mimetype or 'audio/webm',
            purpose=request.form.get('purpose')
        )
        return jsonify(result)
    except AppError as e:
        return app_error_response(e, chunk_index=int(chunk_index))
    except Exception as e:
        logger.error(f"Chunk upload failed: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': 'Failed to upload audio chunk', 'details': str(e)}), 500


@app.route('/api/s2/voice-combine', methods=['POST'])
def combine_chunks():
    body = request.get_json(silent=True)
    session_id = body.get('sessionId') if isinstance(body, dict) else None
    if not session_id:
        logger.error("No session ID provided")
        return jsonify({'error': 'Session ID is required'}), 400

    try:
        return jsonify(chunk_service.combine_session(session_id))
    except AppError as e:
        return app_error_response(e)
    except Exception as e:
        logger.error(f"Audio combination failed: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': 'Failed to combine audio chunks', 'details': str(e)}), 500


@app.route('/api/s2/voice-combine', methods=['GET'])
def combination_status():
    session_id = request.args.get('session_id')
    if not session_id:
        return jsonify({'error': 'Session ID is required'}), 400

    try:
        return jsonify(chunk_service.combination_status(session_id))
    except AppError as e:
        return app_error_response(e)
    except Exception as e:
        logger.error(f"Status check failed: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': 'Failed to check combination status', 'details': str(e)}), 500
