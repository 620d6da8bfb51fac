"""
Teacher application workflow

PENDING → APPROVED   (admin review, role becomes teacher)
PENDING → REJECTED   (admin review, role becomes rejected_teacher)
REJECTED → PENDING   (applicant resubmits after the cooldown)
"""
import math
import logging
from datetime import datetime, timedelta
from flask import Blueprint, request, jsonify, current_app
from models import (
    db, TeacherProfile, ROLE_STUDENT, ROLE_PENDING_TEACHER, ROLE_TEACHER,
    ROLE_REJECTED_TEACHER
)
from auth import token_required, roles_required, log_activity
from errors import ApplicationError

teacher_bp = Blueprint('teachers', __name__)

logger = logging.getLogger(__name__)

DECISIONS = ['APPROVED', 'REJECTED']
DEFAULT_REJECTION_REASON = 'Application rejected by admin'
MIN_BIO_LENGTH = 50

APPLICATION_FIELDS = ['bio', 'subjects', 'qualifications', 'experience', 'documents',
                      'video_intro_url', 'availability', 'hourly_rate']


# ==================== VALIDATION ====================

def _string_list(value):
    return isinstance(value, list) and all(isinstance(v, str) and v.strip() for v in value)


def validate_application(data):
    """Check an application payload. Returns (fields, error)."""
    required = ['bio', 'subjects', 'qualifications']
    for field in required:
        if not data.get(field):
            return None, f'{field} is required'

    if not isinstance(data['bio'], str):
        return None, 'bio must be text'
    if not _string_list(data['subjects']):
        return None, 'subjects must be a list of names'
    if not _string_list(data['qualifications']):
        return None, 'qualifications must be a list'

    experience = data.get('experience', 0)
    if isinstance(experience, bool) or not isinstance(experience, int) or experience < 0:
        return None, 'experience must be a non-negative number of years'

    documents = data.get('documents', [])
    if not isinstance(documents, list) or not all(isinstance(d, str) for d in documents):
        return None, 'documents must be a list of urls'

    hourly_rate = data.get('hourly_rate')
    if hourly_rate is not None and (isinstance(hourly_rate, bool)
                                    or not isinstance(hourly_rate, (int, float)) or hourly_rate < 0):
        return None, 'hourly_rate must be a non-negative number'

    return {
        'bio': data['bio'].strip(),
        'subjects': [s.strip() for s in data['subjects']],
        'qualifications': [q.strip() for q in data['qualifications']],
        'experience': experience,
        'documents': documents,
        'video_intro_url': data.get('video_intro_url'),
        'availability': data.get('availability'),
        'hourly_rate': hourly_rate
    }, None


def apply_application_fields(user, fields, now=None):
    """Create or refresh the user's application as PENDING"""
    now = now or datetime.utcnow()
    profile = user.teacher_profile
    if profile is None:
        profile = TeacherProfile(user_id=user.id)
        db.session.add(profile)
        user.teacher_profile = profile

    for field, value in fields.items():
        setattr(profile, field, value)
    profile.application_status = 'PENDING'
    profile.submitted_at = now
    profile.reviewed_at = None
    profile.reviewed_by = None
    profile.rejection_reason = None
    user.role = ROLE_PENDING_TEACHER
    db.session.flush()
    return profile


# ==================== STATE MACHINE ====================

def reapply_date(profile):
    if profile.application_status != 'REJECTED' or not profile.reviewed_at:
        return None
    return profile.reviewed_at + timedelta(days=current_app.config['TEACHER_REAPPLY_DAYS'])


def can_reapply(profile, now=None):
    date = reapply_date(profile)
    return date is not None and (now or datetime.utcnow()) >= date


def review_application(profile, reviewer, decision, rejection_reason=None, now=None):
    """Approve or reject a pending application"""
    now = now or datetime.utcnow()
    if decision not in DECISIONS:
        raise ApplicationError('Decision must be APPROVED or REJECTED', 'INVALID_DECISION')
    if profile.application_status != 'PENDING':
        raise ApplicationError(
            f'Application is {profile.application_status}, only PENDING applications can be reviewed',
            'INVALID_TRANSITION', 409
        )

    profile.application_status = decision
    profile.reviewed_at = now
    profile.reviewed_by = reviewer.id

    if decision == 'APPROVED':
        profile.rejection_reason = None
        profile.user.role = ROLE_TEACHER
    else:
        reason = (rejection_reason or '').strip()
        profile.rejection_reason = reason or DEFAULT_REJECTION_REASON
        profile.user.role = ROLE_REJECTED_TEACHER

    db.session.flush()
    logger.info(f"Application {profile.id} {decision} by admin {reviewer.id}")
    return profile


def resubmit_application(profile, fields, now=None):
    """Resubmit a rejected application once the cooldown has passed"""
    now = now or datetime.utcnow()
    if profile.application_status != 'REJECTED':
        raise ApplicationError('Only rejected applications can be resubmitted', 'INVALID_TRANSITION', 409)
    if not can_reapply(profile, now):
        raise ApplicationError(
            f'You can reapply from {reapply_date(profile).date().isoformat()}',
            'REAPPLY_TOO_EARLY', 409
        )
    return apply_application_fields(profile.user, fields, now)


# ==================== STATUS ====================

def profile_completion(profile):
    user = profile.user
    items = [
        {'key': 'bio', 'label': f'Bio longer than {MIN_BIO_LENGTH} characters', 'required': True,
         'completed': len(profile.bio or '') > MIN_BIO_LENGTH},
        {'key': 'video', 'label': 'Introduction video', 'required': False,
         'completed': bool(profile.video_intro_url)},
        {'key': 'documents', 'label': 'Supporting documents', 'required': True,
         'completed': bool(profile.documents)},
        {'key': 'qualifications', 'label': 'Qualifications', 'required': True,
         'completed': bool(profile.qualifications)},
        {'key': 'subjects', 'label': 'Subjects', 'required': True,
         'completed': bool(profile.subjects)},
        {'key': 'availability', 'label': 'Availability', 'required': False,
         'completed': bool(profile.availability)},
        {'key': 'profile_picture', 'label': 'Profile picture', 'required': False,
         'completed': bool(user.profile_picture)},
        {'key': 'experience', 'label': 'Teaching experience', 'required': True,
         'completed': (profile.experience or 0) > 0},
    ]
    done = sum(1 for item in items if item['completed'])
    return {
        'percentage': round(done / len(items) * 100),
        'items': items,
        'improvement_areas': [item['label'] for item in items if not item['completed']]
    }


def estimated_review_time():
    pending = TeacherProfile.query.filter_by(application_status='PENDING').count()
    days = max(1, math.ceil(pending / current_app.config['TEACHER_REVIEWS_PER_DAY']))
    return f'{days}-{days + 2} business days'


def application_status(profile, now=None):
    date = reapply_date(profile)
    return {
        'application': profile.to_dict(include_user=False),
        'status': profile.application_status,
        'profile_completion': profile_completion(profile),
        'can_reapply': can_reapply(profile, now),
        'reapply_date': date.isoformat() if date else None,
        'estimated_review_time': estimated_review_time() if profile.application_status == 'PENDING' else None
    }


# ==================== ROUTES ====================

@teacher_bp.route('/api/teacher/application', methods=['GET'])
@token_required
def get_application(user):
    """Current user's application status"""
    if not user.teacher_profile:
        return jsonify({'error': 'No teacher application found'}), 404
    return jsonify(application_status(user.teacher_profile)), 200


@teacher_bp.route('/api/teacher/application', methods=['POST'])
@roles_required(ROLE_STUDENT)
def submit_application(user):
    """Existing student applies to teach"""
    if user.teacher_profile:
        return jsonify({'error': 'Application already exists'}), 409

    fields, error = validate_application(request.get_json() or {})
    if error:
        return jsonify({'error': error}), 400

    profile = apply_application_fields(user, fields)
    db.session.commit()
    log_activity(user.id, 'teacher_application_submitted', {'profile_id': profile.id},
                 request.remote_addr)

    return jsonify({
        'message': 'Application submitted for review',
        **application_status(profile)
    }), 201


@teacher_bp.route('/api/teacher/application', methods=['PUT'])
@roles_required(ROLE_PENDING_TEACHER, ROLE_REJECTED_TEACHER, ROLE_TEACHER)
def update_application(user):
    """Edit a pending application, resubmit a rejected one, or update an approved profile"""
    profile = user.teacher_profile
    if not profile:
        return jsonify({'error': 'No teacher application found'}), 404

    data = request.get_json() or {}
    merged = {field: getattr(profile, field) for field in APPLICATION_FIELDS}
    merged.update({k: v for k, v in data.items() if k in APPLICATION_FIELDS})
    fields, error = validate_application(merged)
    if error:
        return jsonify({'error': error}), 400

    if profile.application_status == 'REJECTED':
        resubmit_application(profile, fields)
        action = 'teacher_application_resubmitted'
        message = 'Application resubmitted for review'
    else:
        for field, value in fields.items():
            setattr(profile, field, value)
        action = 'teacher_application_updated'
        message = 'Application updated'

    db.session.commit()
    log_activity(user.id, action, {'profile_id': profile.id}, request.remote_addr)

    return jsonify({'message': message, **application_status(profile)}), 200
