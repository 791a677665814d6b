#!/usr/bin/env python3
"""
AssessMatch Web Application
A Flask-based JSON API for assessment recommendations, with real-time
progress over Socket.IO.
"""

import threading

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from . import __version__
from .errors import (
    EmbeddingUnavailable,
    InvalidInput,
    MalformedCatalog,
    RecommendationTimeout,
    ServiceNotReady,
)
from .models import RecommendationFilters, RecommendationOptions

app = Flask(__name__)
app.config['SECRET_KEY'] = 'assessmatch-web-secret-key'
app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024  # 1MB max request body

# Initialize SocketIO for real-time updates
socketio = SocketIO(app, cors_allowed_origins="*")

# Error type -> HTTP status
ERROR_STATUS = (
    (InvalidInput, 400),
    (ServiceNotReady, 503),
    (EmbeddingUnavailable, 503),
    (MalformedCatalog, 503),
    (RecommendationTimeout, 504),
)

_engine = None
_engine_lock = threading.Lock()


def get_engine():
    """Shared recommendation engine, built from configuration on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            from .matching import get_recommendation_engine
            _engine = get_recommendation_engine()
        return _engine


def progress_callback(msg_type, message):
    socketio.emit('progress', {'type': msg_type, 'message': message})


def make_progress_callback(sid):
    """Progress callback that reports to one Socket.IO client only."""
    def emit_progress(msg_type, message):
        socketio.emit('progress', {'type': msg_type, 'message': message}, to=sid)
    return emit_progress


def error_response(error):
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return jsonify({'success': False, 'error': str(error)}), status
    return jsonify({'success': False, 'error': f"Unexpected error: {error}"}), 500


def parse_recommend_request(data):
    """Build (job description, options) from a request body."""
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")

    job_description = data.get('jobDescription', data.get('job_description'))
    if not isinstance(job_description, str):
        raise InvalidInput("Please enter a job description.")

    max_results = data.get('maxResults', data.get('max_results'))
    if max_results is not None and (isinstance(max_results, bool) or not isinstance(max_results, int)):
        raise InvalidInput(f"maxResults must be a positive integer, got {max_results!r}")

    filters = data.get('filters') or {}
    if not isinstance(filters, dict):
        raise InvalidInput("filters must be an object")

    rerank = data.get('rerank')
    if rerank is not None and not isinstance(rerank, bool):
        raise InvalidInput("rerank must be true or false")

    try:
        parsed_filters = RecommendationFilters.from_dict(filters)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Invalid filters: {e}") from e

    options = RecommendationOptions(
        max_results=max_results,
        filters=parsed_filters,
        rerank=rerank,
    )
    return job_description, options


def run_recommendation(data, emit_progress=None):
    """Run one recommendation and return (body, status)."""
    try:
        job_description, options = parse_recommend_request(data)
        response = get_engine().recommend(job_description, options, progress=emit_progress)
    except Exception as e:
        if emit_progress:
            emit_progress('error', str(e))
        return error_response(e)
    body = response.to_dict()
    body['success'] = True
    return jsonify(body), 200


@app.route('/')
def index():
    """Service index"""
    return jsonify({
        'service': 'assessmatch',
        'version': __version__,
        'endpoints': ['/api/recommend', '/api/status', '/api/reload'],
    })


@app.route('/api/recommend', methods=['POST'])
def recommend():
    """Recommend assessments for a job description"""
    data = request.get_json(silent=True)
    sid = data.get('socketId') if isinstance(data, dict) else None
    emit_progress = make_progress_callback(sid) if isinstance(sid, str) and sid else None
    return run_recommendation(data, emit_progress=emit_progress)


@app.route('/api/status')
def get_status():
    """Get engine status"""
    try:
        status = get_engine().get_status()
    except Exception as e:
        return error_response(e)
    return jsonify({'success': True, 'status': status})


@app.route('/api/reload', methods=['POST'])
def reload_catalog():
    """Rebuild the assessment store from the catalog"""
    try:
        count = get_engine().reload(progress=progress_callback)
    except Exception as e:
        return error_response(e)
    return jsonify({'success': True, 'assessments': count})


# WebSocket events for real-time updates
@socketio.on('connect')
def handle_connect():
    emit('message', {'type': 'info', 'message': 'Connected to AssessMatch'})


@socketio.on('recommend')
def handle_recommend(data):
    """Run a recommendation with progress events sent to the requesting client"""
    sid = request.sid

    def recommend_with_progress():
        with app.app_context():
            body, status = run_recommendation(data, emit_progress=make_progress_callback(sid))
            result = body.get_json()
            result['status'] = status
        socketio.emit('recommend_complete', result, to=sid)

    # Run in background thread
    thread = threading.Thread(target=recommend_with_progress, daemon=True)
    thread.start()
