"""
Integration tests for the /api/messages endpoints.
"""

import io
from datetime import timedelta
from unittest.mock import patch

from walkie.database import db
from walkie.models import APIToken
from walkie.services.exceptions import StorageFault
from walkie.utils import utcnow


def _upload(client, headers, data=b'RIFF-audio', duration='5', filename='clip.m4a'):
    return client.post(
        '/api/messages/upload',
        data={'audio': (io.BytesIO(data), filename), 'duration': duration},
        headers=headers,
        content_type='multipart/form-data',
    )


def _unread(client, headers):
    response = client.get('/api/messages', headers=headers)
    assert response.status_code == 200
    return response.get_json()['messages']


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_requires_authentication(client):
    response = client.get('/api/messages')
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Authentication required'

    response = client.get('/api/messages', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 401


def test_unapproved_user_token_rejected(client, make_user):
    _, headers = make_user(approved=False)
    assert client.get('/api/messages', headers=headers).status_code == 401


def test_expired_token_rejected(app, client, make_user):
    user_id, headers = make_user()
    with app.app_context():
        for token in APIToken.query.filter_by(user_id=user_id).all():
            token.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()
    assert client.get('/api/messages', headers=headers).status_code == 401


def test_x_api_token_header(client, make_user):
    _, headers = make_user()
    token = headers['Authorization'].split(' ', 1)[1]
    assert client.get('/api/messages', headers={'X-API-Token': token}).status_code == 200


def test_upload_list_download_flow(client, make_user):
    alice_id, alice = make_user('alice')
    _, bob = make_user('bob')

    response = _upload(client, alice, data=b'hello bob')
    assert response.status_code == 201
    payload = response.get_json()
    message_id = payload['message_id']
    assert payload['message'] == 'Audio uploaded successfully'

    messages = _unread(client, bob)
    assert len(messages) == 1
    entry = messages[0]
    assert entry['id'] == message_id
    assert entry['sender_user_id'] == alice_id
    assert entry['duration'] == 5
    assert entry['blob_locator'].startswith('local://')
    assert entry['created_at']

    # Sender never sees their own message as unread
    assert _unread(client, alice) == []

    response = client.get(f'/api/messages/download?id={message_id}', headers=bob)
    assert response.status_code == 200
    assert response.get_data() == b'hello bob'
    assert response.mimetype == 'audio/mp4'
    response.close()

    assert _unread(client, bob) == []


def test_audio_route_variant(client, make_user):
    _, alice = make_user('alice')
    _, bob = make_user('bob')
    message_id = _upload(client, alice, data=b'abc').get_json()['message_id']

    response = client.get(f'/api/messages/{message_id}/audio', headers=bob)
    assert response.status_code == 200
    assert response.get_data() == b'abc'
    response.close()


def test_upload_validation(client, make_user):
    _, headers = make_user()

    response = client.post('/api/messages/upload', data={'duration': '3'}, headers=headers,
                           content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Audio file is required'

    response = client.post('/api/messages/upload', data={'audio': (io.BytesIO(b'x'), 'a.m4a')},
                           headers=headers, content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Duration is required'

    for bad in ('abc', '-2', '1.5', '--5', '²'):
        response = _upload(client, headers, duration=bad)
        assert response.status_code == 400, bad
        assert 'error' in response.get_json()


def test_upload_too_large(app, client, make_user):
    _, headers = make_user()
    limit = app.config['MAX_UPLOAD_BYTES']

    response = _upload(client, headers, data=b'x' * (limit + 1))
    assert response.status_code == 413
    assert 'error' in response.get_json()

    # Bodies far beyond the limit are refused before parsing
    response = _upload(client, headers, data=b'x' * (app.config['MAX_CONTENT_LENGTH'] + 1))
    assert response.status_code == 413
    assert 'File too large' in response.get_json()['error']

    assert list(app.extensions['walkie'].blob_store.iter_stored(include_partial=True)) == []


def test_download_errors(client, make_user):
    _, headers = make_user()

    response = client.get('/api/messages/download', headers=headers)
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Message ID is required'

    response = client.get('/api/messages/download?id=does-not-exist', headers=headers)
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Message not found'


def test_download_missing_blob_is_404(app, client, make_user):
    _, alice = make_user('alice')
    _, bob = make_user('bob')
    message_id = _upload(client, alice).get_json()['message_id']

    services = app.extensions['walkie']
    with app.app_context():
        services.blob_store.delete(services.messages.get(message_id).blob_locator)

    response = client.get(f'/api/messages/download?id={message_id}', headers=bob)
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Audio file not found'


def test_mark_received(client, make_user):
    _, alice = make_user('alice')
    _, bob = make_user('bob')
    first = _upload(client, alice).get_json()['message_id']
    second = _upload(client, alice).get_json()['message_id']

    response = client.post('/api/messages/received', json={'message_id': first}, headers=bob)
    assert response.status_code == 200
    assert response.get_json()['message'] == 'Message marked as received'

    # Second call is a no-op
    response = client.post('/api/messages/received', json={'message_id': first}, headers=bob)
    assert response.status_code == 200

    assert [m['id'] for m in _unread(client, bob)] == [second]


def test_mark_received_errors(app, client, make_user):
    _, alice = make_user('alice')
    _, bob = make_user('bob')

    response = client.post('/api/messages/received', json={}, headers=bob)
    assert response.status_code == 400

    response = client.post('/api/messages/received', data='not json', headers=bob)
    assert response.status_code == 400

    response = client.post('/api/messages/received', json={'message_id': 'missing'}, headers=bob)
    assert response.status_code == 404

    message_id = _upload(client, alice).get_json()['message_id']
    services = app.extensions['walkie']
    with patch.object(services.receipts, 'create_if_absent', side_effect=StorageFault('database is locked')):
        response = client.post('/api/messages/received', json={'message_id': message_id}, headers=bob)
    assert response.status_code == 500
    assert response.get_json()['error'] == 'database is locked'
