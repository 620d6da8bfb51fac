"""
Flask extensions shared by the blueprints.
Bound to the application in app.create_app().
"""
from flask import current_app
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager, current_user

cors = CORS()
limiter = Limiter(key_func=get_remote_address)
login_manager = LoginManager()


def user_or_ip_key():
    """Rate limit key: authenticated user id, otherwise remote address"""
    if current_user and current_user.is_authenticated:
        return f'user:{current_user.id}'
    return get_remote_address()


def login_limit():
    return current_app.config['RATELIMIT_LOGIN']


def heartbeat_limit():
    return current_app.config['RATELIMIT_HEARTBEAT']


def message_limit():
    return current_app.config['RATELIMIT_MESSAGES']
