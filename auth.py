"""
Authentication Routes
Email + password login with JWT bearer tokens and role-scoped decorators
"""
import json
import logging
from datetime import datetime, timedelta
from functools import wraps
from flask import Blueprint, request, jsonify, current_app
import jwt
from models import (
    db, User, SystemLog, ROLE_STUDENT, ROLE_PENDING_TEACHER, ROLE_ADMIN
)
from extensions import limiter, login_limit
import gamification

auth_bp = Blueprint('auth', __name__)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def generate_token(user_id, token_type='access'):
    """Generate a signed access token"""
    expires = timedelta(minutes=current_app.config['JWT_ACCESS_TOKEN_EXPIRES'])
    payload = {
        'user_id': user_id,
        'exp': datetime.utcnow() + expires,
        'iat': datetime.utcnow(),
        'type': token_type
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'],
                      algorithm=current_app.config['JWT_ALGORITHM'])


def decode_token(token):
    """Decode and validate JWT token"""
    try:
        payload = jwt.decode(token, current_app.config['JWT_SECRET'],
                             algorithms=[current_app.config['JWT_ALGORITHM']])
        return {'success': True, 'payload': payload}
    except jwt.ExpiredSignatureError:
        return {'success': False, 'error': 'Token expired'}
    except jwt.InvalidTokenError as e:
        return {'success': False, 'error': str(e)}


def authenticate_request(req):
    """Resolve the bearer token of a request. Returns (user, error)."""
    auth_header = req.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, 'Token missing'

    result = decode_token(auth_header[7:])
    if not result['success']:
        return None, result['error']

    payload = result['payload']
    if payload.get('type') != 'access':
        return None, 'Invalid token type'

    user = db.session.get(User, payload.get('user_id'))
    if not user:
        return None, 'User not found'
    if not user.is_active:
        return None, 'Account is deactivated'
    return user, None


def token_required(f):
    """Decorator for JWT-protected routes"""
    @wraps(f)
    def decorator(*args, **kwargs):
        user, error = authenticate_request(request)
        if error:
            return jsonify({'error': error}), 401
        return f(user, *args, **kwargs)
    return decorator


def roles_required(*roles):
    """Decorator restricting a route to the given roles"""
    def wrapper(f):
        @wraps(f)
        @token_required
        def decorator(user, *args, **kwargs):
            if user.role not in roles:
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(user, *args, **kwargs)
        return decorator
    return wrapper


def admin_required(f):
    """Decorator for admin-only routes"""
    @wraps(f)
    @token_required
    def decorator(user, *args, **kwargs):
        if not user.is_admin():
            return jsonify({'error': 'Admin access required'}), 403
        return f(user, *args, **kwargs)
    return decorator


def teacher_required(f):
    """Decorator for approved teacher (or admin) routes"""
    @wraps(f)
    @token_required
    def decorator(user, *args, **kwargs):
        if not user.is_teacher():
            return jsonify({'error': 'Teacher access required'}), 403
        return f(user, *args, **kwargs)
    return decorator


def log_activity(user_id, action, details=None, ip_address=None):
    """Log user activity"""
    log = SystemLog(
        user_id=user_id,
        action=action,
        details=json.dumps(details) if isinstance(details, (dict, list)) else details,
        ip_address=ip_address
    )
    db.session.add(log)
    db.session.commit()


def _validate_credentials(data):
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    name = (data.get('name') or '').strip()

    if not email or '@' not in email:
        return None, 'Valid email is required'
    if len(password) < MIN_PASSWORD_LENGTH:
        return None, f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
    if not name:
        return None, 'Name is required'
    if User.query.filter_by(email=email).first():
        return None, 'Email already registered'
    return {'email': email, 'password': password, 'name': name}, None


def _auth_response(user, message, status=200, **extra):
    body = {
        'message': message,
        'access_token': generate_token(user.id),
        'token_type': 'Bearer',
        'user': user.to_dict()
    }
    body.update(extra)
    return jsonify(body), status


@auth_bp.route('/register', methods=['POST'])
def register():
    """Register a student account"""
    data = request.get_json() or {}
    fields, error = _validate_credentials(data)
    if error:
        return jsonify({'error': error}), 400

    user = User(email=fields['email'], name=fields['name'], role=ROLE_STUDENT)
    user.set_password(fields['password'])
    db.session.add(user)
    db.session.commit()

    logger.info(f"New student registered: {user.email}")
    log_activity(user.id, 'register', ip_address=request.remote_addr)

    return _auth_response(user, 'Registration successful', 201)


@auth_bp.route('/register/teacher', methods=['POST'])
def register_teacher():
    """Register a teacher account; the application waits for admin review"""
    from teachers import validate_application, apply_application_fields

    data = request.get_json() or {}
    fields, error = _validate_credentials(data)
    if error:
        return jsonify({'error': error}), 400

    application, error = validate_application(data)
    if error:
        return jsonify({'error': error}), 400

    user = User(email=fields['email'], name=fields['name'], role=ROLE_PENDING_TEACHER,
                profile_picture=data.get('profile_picture'))
    user.set_password(fields['password'])
    db.session.add(user)
    db.session.flush()

    profile = apply_application_fields(user, application)
    db.session.commit()

    logger.info(f"Teacher application submitted: {user.email}")
    log_activity(user.id, 'teacher_application_submitted', {'profile_id': profile.id},
                 request.remote_addr)

    return _auth_response(user, 'Application submitted for review', 201,
                          application=profile.to_dict(include_user=False))


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(login_limit)
def login():
    """Email and password login"""
    data = request.get_json() or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password required'}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        logger.warning(f"Failed login for {email}")
        return jsonify({'error': 'Invalid credentials'}), 401

    if not user.is_active:
        return jsonify({'error': 'Account is deactivated'}), 403

    user.last_login_at = datetime.utcnow()
    login_award = gamification.award_daily_login(user)
    db.session.commit()

    log_activity(user.id, 'login', ip_address=request.remote_addr)

    return _auth_response(user, 'Login successful',
                          daily_login_xp=login_award.xp_awarded)


@auth_bp.route('/admin-login', methods=['POST'])
@limiter.limit(login_limit)
def admin_login():
    """Admin login"""
    data = request.get_json() or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password required'}), 400

    user = User.query.filter_by(email=email, role=ROLE_ADMIN).first()
    if not user or not user.check_password(password):
        logger.warning(f"Failed admin login for {email}")
        return jsonify({'error': 'Invalid admin credentials'}), 401

    if not user.is_active:
        return jsonify({'error': 'Account is deactivated'}), 403

    user.last_login_at = datetime.utcnow()
    db.session.commit()

    log_activity(user.id, 'admin_login', ip_address=request.remote_addr)

    return _auth_response(user, 'Admin login successful')


@auth_bp.route('/me', methods=['GET'])
@token_required
def get_current_user(user):
    """Get current user info"""
    data = user.to_dict()
    if user.teacher_profile:
        data['application_status'] = user.teacher_profile.application_status
    return jsonify({'user': data}), 200


@auth_bp.route('/logout', methods=['POST'])
@token_required
def logout(user):
    """Logout; tokens are stateless so the client discards its copy"""
    log_activity(user.id, 'logout', ip_address=request.remote_addr)
    return jsonify({'message': 'Logged out successfully'}), 200


@auth_bp.route('/update-profile', methods=['POST'])
@token_required
def update_profile(user):
    """Update user profile"""
    data = request.get_json() or {}

    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            return jsonify({'error': 'Name cannot be empty'}), 400
        user.name = name
    if 'bio' in data:
        user.bio = data['bio']
    if 'profile_picture' in data:
        user.profile_picture = data['profile_picture']

    db.session.commit()

    return jsonify({
        'message': 'Profile updated',
        'user': user.to_dict()
    }), 200
