"""
Direct messages between two users
"""
import logging
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from models import db, User, DirectMessageChannel, DirectMessage
from auth import token_required
from extensions import limiter, message_limit, user_or_ip_key
from errors import MessagingError

chat_bp = Blueprint('chat', __name__)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def get_or_create_channel(user, other_user_id, now=None):
    """Returns (channel, created)"""
    if other_user_id == user.id:
        raise MessagingError('Cannot start a conversation with yourself', 'SELF_CHANNEL')

    other = db.session.get(User, other_user_id)
    if not other or not other.is_active:
        raise MessagingError('User not found', 'USER_NOT_FOUND', 404)

    user1_id, user2_id = sorted([user.id, other.id])
    channel = DirectMessageChannel.query.filter_by(user1_id=user1_id, user2_id=user2_id).first()
    if channel:
        return channel, False

    channel = DirectMessageChannel(user1_id=user1_id, user2_id=user2_id,
                                   created_at=now or datetime.utcnow())
    db.session.add(channel)
    db.session.flush()
    logger.info(f"Direct channel {channel.id} created between {user1_id} and {user2_id}")
    return channel, True


def get_channel_for(user, channel_id):
    channel = db.session.get(DirectMessageChannel, channel_id)
    if not channel:
        raise MessagingError('Channel not found', 'CHANNEL_NOT_FOUND', 404)
    if not channel.has_participant(user.id):
        raise MessagingError('Not a participant of this channel', 'NOT_A_PARTICIPANT', 403)
    return channel


def post_message(user, channel, content, now=None):
    now = now or datetime.utcnow()
    content = content.strip() if isinstance(content, str) else ''
    max_length = current_app.config['MESSAGE_MAX_LENGTH']
    if not content:
        raise MessagingError('Message content is required', 'EMPTY_MESSAGE')
    if len(content) > max_length:
        raise MessagingError(f'Messages are limited to {max_length} characters', 'MESSAGE_TOO_LONG')

    message = DirectMessage(channel_id=channel.id, sender_id=user.id, content=content, created_at=now)
    db.session.add(message)
    channel.last_message_at = now
    db.session.flush()
    return message


def _unread_count(channel, user):
    return channel.messages.filter(
        DirectMessage.sender_id != user.id,
        DirectMessage.read_at.is_(None)
    ).count()


def _channel_dict(channel, user):
    other = channel.other_user(user.id)
    last = channel.messages.order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc()).first()
    return {
        'id': channel.id,
        'other_user': {
            'id': other.id,
            'name': other.name,
            'role': other.role,
            'profile_picture': other.profile_picture
        },
        'last_message': last.to_dict() if last else None,
        'last_message_at': channel.last_message_at.isoformat() if channel.last_message_at else None,
        'unread_count': _unread_count(channel, user),
        'created_at': channel.created_at.isoformat()
    }


# ==================== ROUTES ====================

@chat_bp.route('/api/chat/direct', methods=['POST'])
@token_required
def create_direct_channel(user):
    """Open (or reuse) a direct channel with another user"""
    data = request.get_json() or {}
    other_user_id = data.get('user_id')
    if isinstance(other_user_id, bool) or not isinstance(other_user_id, int):
        return jsonify({'error': 'user_id required'}), 400

    channel, created = get_or_create_channel(user, other_user_id)
    db.session.commit()

    return jsonify({
        'channel': _channel_dict(channel, user),
        'is_new': created
    }), 201 if created else 200


@chat_bp.route('/api/chat/direct', methods=['GET'])
@token_required
def list_direct_channels(user):
    """Caller's channels, most recent activity first"""
    channels = DirectMessageChannel.query.filter(
        (DirectMessageChannel.user1_id == user.id) | (DirectMessageChannel.user2_id == user.id)
    ).all()
    channels.sort(key=lambda c: c.last_message_at or c.created_at, reverse=True)
    return jsonify({'channels': [_channel_dict(c, user) for c in channels]}), 200


@chat_bp.route('/api/chat/direct/<int:channel_id>/messages', methods=['POST'])
@limiter.limit(message_limit, key_func=user_or_ip_key)
@token_required
def send_direct_message(user, channel_id):
    """Send a message to a channel"""
    channel = get_channel_for(user, channel_id)
    message = post_message(user, channel, (request.get_json() or {}).get('content'))
    db.session.commit()
    return jsonify({'message': message.to_dict()}), 201


@chat_bp.route('/api/chat/direct/<int:channel_id>/messages', methods=['GET'])
@token_required
def list_direct_messages(user, channel_id):
    """Newest first; pass `before` (a message id) for older pages"""
    channel = get_channel_for(user, channel_id)
    before = request.args.get('before', type=int)
    limit = max(1, min(request.args.get('limit', DEFAULT_PAGE_SIZE, type=int), MAX_PAGE_SIZE))

    query = channel.messages
    if before:
        query = query.filter(DirectMessage.id < before)
    messages = query.order_by(DirectMessage.id.desc()).limit(limit + 1).all()

    has_more = len(messages) > limit
    messages = messages[:limit]
    return jsonify({
        'messages': [m.to_dict() for m in messages],
        'has_more': has_more,
        'next_cursor': messages[-1].id if has_more else None
    }), 200


@chat_bp.route('/api/chat/direct/<int:channel_id>/read', methods=['POST'])
@token_required
def mark_channel_read(user, channel_id):
    """Mark the other participant's messages as read"""
    channel = get_channel_for(user, channel_id)
    now = datetime.utcnow()
    updated = channel.messages.filter(
        DirectMessage.sender_id != user.id,
        DirectMessage.read_at.is_(None)
    ).update({'read_at': now}, synchronize_session=False)
    db.session.commit()
    return jsonify({'marked_read': updated}), 200
