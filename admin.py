"""
Learnity Admin Module
- Teacher application review (single and batch)
- User moderation
- Direct message moderation
- Platform statistics and audit logs
"""
import logging
from flask import Blueprint, request, jsonify
from sqlalchemy import func, or_
from models import (
    db, User, TeacherProfile, Course, Enrollment, XPActivity, DirectMessage,
    SystemLog, ROLES, ROLE_ADMIN
)
from auth import admin_required, log_activity
from teachers import review_application, profile_completion, reapply_date, DECISIONS
from notifications import email_service
from errors import ApplicationError

admin_bp = Blueprint('admin', __name__)

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
USER_ACTIONS = ['activate', 'deactivate']


def _pagination(pagination, page):
    return {
        'page': page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages
    }


def _notify_decision(profile):
    """Decision emails never undo a review"""
    try:
        if profile.application_status == 'APPROVED':
            email_service.send_application_approved(profile.user)
        else:
            email_service.send_application_rejected(profile.user, profile.rejection_reason,
                                                    reapply_date(profile))
    except Exception as e:
        logger.error(f"Decision email failed for application {profile.id}: {e}")


# ==================== TEACHER APPLICATIONS ====================

@admin_bp.route('/api/admin/teachers/applications', methods=['GET'])
@admin_required
def list_applications(user):
    """List teacher applications with filters"""
    status = request.args.get('status')
    search = (request.args.get('search') or '').strip()
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)

    query = TeacherProfile.query.join(User, TeacherProfile.user_id == User.id)
    if status:
        query = query.filter(TeacherProfile.application_status == status.upper())
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    pagination = query.order_by(TeacherProfile.submitted_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    counts = dict(db.session.query(
        TeacherProfile.application_status, func.count(TeacherProfile.id)
    ).group_by(TeacherProfile.application_status).all())

    return jsonify({
        'applications': [p.to_dict() for p in pagination.items],
        'pagination': _pagination(pagination, page),
        'stats': {
            'total': sum(counts.values()),
            'pending': counts.get('PENDING', 0),
            'approved': counts.get('APPROVED', 0),
            'rejected': counts.get('REJECTED', 0)
        }
    }), 200


@admin_bp.route('/api/admin/teachers/applications/<int:application_id>', methods=['GET'])
@admin_required
def get_application(user, application_id):
    """Get one application with profile completion"""
    profile = TeacherProfile.query.get_or_404(application_id)
    data = profile.to_dict()
    data['profile_completion'] = profile_completion(profile)
    data['reviewer'] = {'id': profile.reviewer.id, 'name': profile.reviewer.name} if profile.reviewer else None
    return jsonify({'application': data}), 200


@admin_bp.route('/api/admin/teachers/applications/<int:application_id>/review', methods=['POST'])
@admin_required
def review_single_application(user, application_id):
    """Approve or reject an application"""
    profile = TeacherProfile.query.get_or_404(application_id)
    data = request.get_json() or {}

    if not data.get('decision'):
        return jsonify({'error': 'decision required'}), 400

    review_application(profile, user, data['decision'], data.get('rejection_reason'))
    db.session.commit()

    log_activity(user.id, 'teacher_application_reviewed', {
        'application_id': profile.id,
        'decision': profile.application_status,
        'rejection_reason': profile.rejection_reason
    }, request.remote_addr)
    _notify_decision(profile)

    return jsonify({
        'message': f'Application {profile.application_status.lower()}',
        'application': profile.to_dict()
    }), 200


@admin_bp.route('/api/admin/teachers/applications/batch', methods=['POST'])
@admin_required
def review_batch(user):
    """Apply one decision to many applications"""
    data = request.get_json() or {}
    application_ids = data.get('application_ids')
    decision = data.get('decision')

    if not isinstance(application_ids, list) or not application_ids:
        return jsonify({'error': 'application_ids required'}), 400
    if len(application_ids) > MAX_BATCH_SIZE:
        return jsonify({'error': f'At most {MAX_BATCH_SIZE} applications per batch'}), 400
    if decision not in DECISIONS:
        return jsonify({'error': 'Decision must be APPROVED or REJECTED'}), 400

    results = []
    reviewed = []
    for application_id in application_ids:
        profile = db.session.get(TeacherProfile, application_id) if isinstance(application_id, int) else None
        if not profile:
            results.append({'application_id': application_id, 'success': False,
                            'error': 'Application not found'})
            continue
        try:
            review_application(profile, user, decision, data.get('rejection_reason'))
        except ApplicationError as e:
            results.append({'application_id': application_id, 'success': False, 'error': e.message})
            continue
        reviewed.append(profile)
        results.append({'application_id': application_id, 'success': True,
                        'status': profile.application_status})

    db.session.commit()

    for profile in reviewed:
        log_activity(user.id, 'teacher_application_reviewed', {
            'application_id': profile.id,
            'decision': profile.application_status,
            'batch': True
        }, request.remote_addr)
        _notify_decision(profile)

    successful = len(reviewed)
    return jsonify({
        'results': results,
        'summary': {
            'total': len(application_ids),
            'successful': successful,
            'failed': len(application_ids) - successful
        }
    }), 200


# ==================== USER MODERATION ====================

@admin_bp.route('/api/admin/users', methods=['GET'])
@admin_required
def list_users(user):
    """Get all users (admin only)"""
    role = request.args.get('role')
    active = request.args.get('is_active')
    search = (request.args.get('search') or '').strip()
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 100)

    query = User.query
    if role:
        query = query.filter_by(role=role)
    if active in ('true', 'false'):
        query = query.filter_by(is_active=(active == 'true'))
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    pagination = query.order_by(User.created_at.desc(), User.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'users': [u.to_dict() for u in pagination.items],
        'pagination': _pagination(pagination, page)
    }), 200


@admin_bp.route('/api/admin/users/<int:target_user_id>/status', methods=['POST'])
@admin_required
def update_user_status(user, target_user_id):
    """Activate or deactivate an account"""
    target = User.query.get_or_404(target_user_id)
    action = (request.get_json() or {}).get('action')

    if action not in USER_ACTIONS:
        return jsonify({'error': f'action must be one of {", ".join(USER_ACTIONS)}'}), 400
    if action == 'deactivate':
        if target.id == user.id:
            return jsonify({'error': 'You cannot deactivate your own account'}), 400
        if target.role == ROLE_ADMIN:
            return jsonify({'error': 'Admins cannot be deactivated'}), 403

    target.is_active = action == 'activate'
    db.session.commit()

    logger.info(f"Admin {user.id} {action}d user {target.id}")
    log_activity(user.id, f'user_{action}', {'target_user_id': target.id}, request.remote_addr)

    return jsonify({'message': f'User {action}d', 'user': target.to_dict()}), 200


@admin_bp.route('/api/admin/messages/<int:message_id>/hide', methods=['POST'])
@admin_required
def hide_message(user, message_id):
    """Hide a direct message from both participants"""
    message = DirectMessage.query.get_or_404(message_id)
    message.is_hidden = True
    message.hidden_by = user.id
    db.session.commit()

    log_activity(user.id, 'message_hidden', {
        'message_id': message.id,
        'channel_id': message.channel_id,
        'reason': (request.get_json(silent=True) or {}).get('reason')
    }, request.remote_addr)

    return jsonify({'message': 'Message hidden'}), 200


# ==================== DASHBOARD ====================

@admin_bp.route('/api/admin/stats', methods=['GET'])
@admin_required
def get_stats(user):
    """Platform statistics"""
    def grouped(column, model_id):
        return dict(db.session.query(column, func.count(model_id)).group_by(column).all())

    users_by_role = grouped(User.role, User.id)
    courses_by_status = grouped(Course.status, Course.id)
    enrollments_by_status = grouped(Enrollment.status, Enrollment.id)

    return jsonify({
        'stats': {
            'users': {
                'total': sum(users_by_role.values()),
                'active': User.query.filter_by(is_active=True).count(),
                'by_role': {role: users_by_role.get(role, 0) for role in ROLES}
            },
            'teacher_applications': {
                'pending': TeacherProfile.query.filter_by(application_status='PENDING').count()
            },
            'courses': {
                'total': sum(courses_by_status.values()),
                'by_status': courses_by_status
            },
            'enrollments': {
                'total': sum(enrollments_by_status.values()),
                'by_status': enrollments_by_status
            },
            'xp_awarded': db.session.query(func.coalesce(func.sum(XPActivity.amount), 0)).scalar(),
            'messages_sent': DirectMessage.query.count()
        }
    }), 200


@admin_bp.route('/api/admin/audit-logs', methods=['GET'])
@admin_required
def get_audit_logs(user):
    """Audit trail with filters"""
    action = request.args.get('action')
    user_id = request.args.get('user_id', type=int)
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 200)

    query = SystemLog.query
    if action:
        query = query.filter_by(action=action)
    if user_id:
        query = query.filter_by(user_id=user_id)

    pagination = query.order_by(SystemLog.created_at.desc(), SystemLog.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'logs': [log.to_dict() for log in pagination.items],
        'pagination': _pagination(pagination, page)
    }), 200
