"""
Audio message upload, listing, download and receipts.

All routes require an authenticated, approved user.
"""

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from walkie.services import get_services
from walkie.services.exceptions import DeliveryError, ValidationError

# Create blueprint
messages_bp = Blueprint('messages', __name__, url_prefix='/api/messages')


@messages_bp.errorhandler(DeliveryError)
def handle_delivery_error(error):
    if error.status_code >= 500:
        current_app.logger.error(f"{request.method} {request.path} failed: {error}")
    return jsonify({'error': error.message}), error.status_code


@messages_bp.route('/upload', methods=['POST'])
@login_required
def upload_message():
    """
    Upload an audio clip.

    Multipart form-data fields:
      - audio (required): the clip
      - duration (required): length in whole seconds
    """
    audio = request.files.get('audio')
    if audio is None:
        return jsonify({'error': 'Audio file is required'}), 400

    duration = request.form.get('duration')
    if duration is None or not duration.strip():
        return jsonify({'error': 'Duration is required'}), 400

    delivery = get_services().delivery
    message_id = delivery.upload(
        current_user.id,
        audio.stream,
        duration,
        original_filename=audio.filename,
    )

    return jsonify({
        'message_id': message_id,
        'message': 'Audio uploaded successfully'
    }), 201


@messages_bp.route('', methods=['GET'])
@login_required
def list_messages():
    """Unread messages for the current user, oldest first."""
    messages = get_services().delivery.list_unread(current_user.id)
    return jsonify({'messages': [m.to_dict() for m in messages]})


def _send_message_audio(message_id):
    result = get_services().delivery.download(current_user.id, message_id)
    delivery = result.delivery
    return send_file(
        delivery.local_path,
        mimetype=delivery.mimetype,
        as_attachment=False,
        conditional=True,
    )


@messages_bp.route('/download', methods=['GET'])
@login_required
def download_message():
    """Stream a message's audio. The first download marks it as received."""
    message_id = request.args.get('id', '').strip()
    if not message_id:
        return jsonify({'error': 'Message ID is required'}), 400
    return _send_message_audio(message_id)


@messages_bp.route('/<message_id>/audio', methods=['GET'])
@login_required
def download_message_audio(message_id):
    return _send_message_audio(message_id)


@messages_bp.route('/received', methods=['POST'])
@login_required
def mark_received():
    """
    Mark a message as received.

    Request JSON:
        message_id (str): the message to mark
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid request body')

    message_id = data.get('message_id')
    if not message_id or not isinstance(message_id, str):
        raise ValidationError('message_id is required')

    receipt = get_services().delivery.mark_received(current_user.id, message_id)
    return jsonify({'message': 'Message marked as received', 'receipt': receipt.to_dict()})
