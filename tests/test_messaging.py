"""
Tests for direct messaging and moderation
"""
from datetime import datetime, timedelta

import pytest

import messaging
from conftest import auth_headers
from errors import MessagingError
from models import db

NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
def pair(make_user):
    return make_user('student'), make_user('teacher')


@pytest.fixture
def channel(pair):
    alice, bob = pair
    channel, _ = messaging.get_or_create_channel(bob, alice.id, now=NOW)
    db.session.commit()
    return channel


class TestChannels:

    def test_participants_are_stored_in_order(self, pair):
        alice, bob = pair
        channel, created = messaging.get_or_create_channel(bob, alice.id, now=NOW)

        assert created
        assert channel.user1_id == alice.id
        assert channel.user2_id == bob.id
        assert channel.other_user(alice.id).id == bob.id

    def test_existing_channel_is_reused(self, pair, channel):
        alice, bob = pair
        again, created = messaging.get_or_create_channel(alice, bob.id)
        assert not created
        assert again.id == channel.id

    def test_cannot_message_yourself(self, pair):
        alice, _ = pair
        with pytest.raises(MessagingError) as exc:
            messaging.get_or_create_channel(alice, alice.id)
        assert exc.value.code == 'SELF_CHANNEL'

    def test_unknown_or_inactive_user(self, pair, make_user):
        alice, _ = pair
        with pytest.raises(MessagingError) as exc:
            messaging.get_or_create_channel(alice, 9999)
        assert exc.value.status_code == 404

        inactive = make_user('student', is_active=False)
        with pytest.raises(MessagingError) as exc:
            messaging.get_or_create_channel(alice, inactive.id)
        assert exc.value.code == 'USER_NOT_FOUND'

    def test_create_route(self, client, pair):
        alice, bob = pair
        response = client.post('/api/chat/direct', headers=auth_headers(alice), json={'user_id': bob.id})
        assert response.status_code == 201
        assert response.get_json()['is_new']
        channel_id = response.get_json()['channel']['id']

        response = client.post('/api/chat/direct', headers=auth_headers(bob), json={'user_id': alice.id})
        assert response.status_code == 200
        assert not response.get_json()['is_new']
        assert response.get_json()['channel']['id'] == channel_id

        response = client.post('/api/chat/direct', headers=auth_headers(alice), json={'user_id': 'bob'})
        assert response.status_code == 400

    def test_channels_ordered_by_last_message(self, client, pair, make_user, channel):
        alice, bob = pair
        carol = make_user('student')
        other, _ = messaging.get_or_create_channel(alice, carol.id, now=NOW + timedelta(minutes=1))
        messaging.post_message(alice, other, 'Hi Carol', now=NOW + timedelta(minutes=2))
        messaging.post_message(bob, channel, 'Hi Alice', now=NOW + timedelta(minutes=5))
        db.session.commit()

        response = client.get('/api/chat/direct', headers=auth_headers(alice))
        channels = response.get_json()['channels']

        assert [c['id'] for c in channels] == [channel.id, other.id]
        assert channels[0]['other_user']['id'] == bob.id
        assert channels[0]['last_message']['content'] == 'Hi Alice'
        assert channels[0]['unread_count'] == 1
        assert channels[1]['unread_count'] == 0


class TestMessages:

    def test_send_message(self, client, pair, channel):
        alice, _ = pair
        response = client.post(f'/api/chat/direct/{channel.id}/messages', headers=auth_headers(alice),
                               json={'content': '  Can we review chapter 2?  '})

        assert response.status_code == 201
        message = response.get_json()['message']
        assert message['content'] == 'Can we review chapter 2?'
        assert message['sender_id'] == alice.id
        assert channel.last_message_at is not None

    @pytest.mark.parametrize('content,code', [
        ('   ', 'EMPTY_MESSAGE'),
        (None, 'EMPTY_MESSAGE'),
        ('x' * 2001, 'MESSAGE_TOO_LONG'),
    ])
    def test_invalid_content(self, client, pair, channel, content, code):
        alice, _ = pair
        response = client.post(f'/api/chat/direct/{channel.id}/messages', headers=auth_headers(alice),
                               json={'content': content})
        assert response.status_code == 400
        assert response.get_json()['code'] == code

    def test_non_participant_is_refused(self, client, make_user, channel):
        outsider = make_user('student')
        response = client.get(f'/api/chat/direct/{channel.id}/messages', headers=auth_headers(outsider))
        assert response.status_code == 403
        assert response.get_json()['code'] == 'NOT_A_PARTICIPANT'

        response = client.get('/api/chat/direct/9999/messages', headers=auth_headers(outsider))
        assert response.status_code == 404

    def test_cursor_pagination(self, client, pair, channel):
        alice, bob = pair
        sent = [messaging.post_message(alice, channel, f'message {i}', now=NOW + timedelta(seconds=i))
                for i in range(5)]
        db.session.commit()
        url = f'/api/chat/direct/{channel.id}/messages'

        page = client.get(f'{url}?limit=2', headers=auth_headers(bob)).get_json()
        assert [m['id'] for m in page['messages']] == [sent[4].id, sent[3].id]
        assert page['has_more']

        page = client.get(f"{url}?limit=2&before={page['next_cursor']}", headers=auth_headers(bob)).get_json()
        assert [m['id'] for m in page['messages']] == [sent[2].id, sent[1].id]

        page = client.get(f"{url}?limit=2&before={page['next_cursor']}", headers=auth_headers(bob)).get_json()
        assert [m['id'] for m in page['messages']] == [sent[0].id]
        assert not page['has_more']
        assert page['next_cursor'] is None

    def test_mark_read(self, client, pair, channel):
        alice, bob = pair
        messaging.post_message(bob, channel, 'First', now=NOW)
        messaging.post_message(bob, channel, 'Second', now=NOW + timedelta(seconds=1))
        messaging.post_message(alice, channel, 'Reply', now=NOW + timedelta(seconds=2))
        db.session.commit()

        response = client.post(f'/api/chat/direct/{channel.id}/read', headers=auth_headers(alice))
        assert response.get_json()['marked_read'] == 2

        channels = client.get('/api/chat/direct', headers=auth_headers(alice)).get_json()['channels']
        assert channels[0]['unread_count'] == 0
        channels = client.get('/api/chat/direct', headers=auth_headers(bob)).get_json()['channels']
        assert channels[0]['unread_count'] == 1


class TestModeration:

    def test_admin_hides_message(self, client, admin, pair, channel):
        alice, bob = pair
        message = messaging.post_message(bob, channel, 'Something rude', now=NOW)
        db.session.commit()

        response = client.post(f'/api/admin/messages/{message.id}/hide', headers=auth_headers(admin),
                               json={'reason': 'Harassment'})
        assert response.status_code == 200

        messages = client.get(f'/api/chat/direct/{channel.id}/messages',
                              headers=auth_headers(alice)).get_json()['messages']
        assert messages[0]['content'] == '[message removed by a moderator]'
        assert messages[0]['is_hidden']

    def test_only_admins_hide(self, client, pair, channel):
        alice, bob = pair
        message = messaging.post_message(bob, channel, 'Hello', now=NOW)
        db.session.commit()

        response = client.post(f'/api/admin/messages/{message.id}/hide', headers=auth_headers(alice))
        assert response.status_code == 403
