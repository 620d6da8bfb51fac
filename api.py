"""
RESTful API Endpoints for Learnity students
Catalog → Enrollment → Lesson progress → Quizzes → Certificates → Gamification
"""
import logging
from flask import Blueprint, request, jsonify
from sqlalchemy import or_
from models import (
    db, Course, Section, Lesson, Quiz, Enrollment, Certificate, ROLE_STUDENT
)
from auth import token_required, roles_required, teacher_required, log_activity
from extensions import limiter, heartbeat_limit, user_or_ip_key
import catalog
import progress
import quizzes
import gamification

api_bp = Blueprint('api', __name__)

logger = logging.getLogger(__name__)

ENROLLMENT_STATUSES = ['ACTIVE', 'COMPLETED', 'UNENROLLED']


def _pagination(pagination, page):
    return {
        'page': page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages
    }


def _published_course_or_404(course_id):
    return Course.query.filter_by(id=course_id, status='PUBLISHED').first_or_404()


def _completion_dict(completion):
    if completion is None:
        return None
    return {
        'xp_awarded': completion.xp_awarded,
        'already_completed': completion.already_completed,
        'streak': completion.streak,
        'enrollment_progress': completion.enrollment_progress,
        'course_completed': completion.course_completed,
        'certificate': completion.certificate
    }


# ==================== CATALOG ====================

@api_bp.route('/courses', methods=['GET'])
def get_courses():
    """Published courses with search and difficulty filters"""
    search = (request.args.get('search') or '').strip()
    difficulty = request.args.get('difficulty')
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)

    query = Course.query.filter_by(status='PUBLISHED')
    if difficulty:
        query = query.filter_by(difficulty=difficulty.upper())
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(Course.title.ilike(pattern), Course.description.ilike(pattern)))

    pagination = query.order_by(Course.published_at.desc(), Course.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'courses': [c.to_dict() for c in pagination.items],
        'pagination': _pagination(pagination, page)
    }), 200


@api_bp.route('/courses/<int:course_id>', methods=['GET'])
def get_course(course_id):
    """Course outline"""
    course = _published_course_or_404(course_id)
    return jsonify({'course': catalog.course_outline(course)}), 200


@api_bp.route('/courses/<int:course_id>/students', methods=['GET'])
@teacher_required
def get_course_students(user, course_id):
    """Enrolled students (course teacher or admin)"""
    course = Course.query.get_or_404(course_id)
    if course.teacher_id != user.id and not user.is_admin():
        return jsonify({'error': 'Only the course teacher can view students'}), 403

    status = request.args.get('status')
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 100)

    query = Enrollment.query.filter_by(course_id=course.id)
    if status:
        query = query.filter_by(status=status.upper())
    pagination = query.order_by(Enrollment.enrolled_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'students': [{
            'id': e.student.id,
            'name': e.student.name,
            'email': e.student.email,
            'status': e.status,
            'progress': e.progress or 0,
            'enrolled_at': e.enrolled_at.isoformat(),
            'last_accessed_at': e.last_accessed_at.isoformat() if e.last_accessed_at else None
        } for e in pagination.items],
        'pagination': _pagination(pagination, page)
    }), 200


# ==================== ENROLLMENT ====================

@api_bp.route('/courses/<int:course_id>/enroll', methods=['POST'])
@roles_required(ROLE_STUDENT)
def enroll_in_course(user, course_id):
    """Enroll in a published course"""
    course = Course.query.get_or_404(course_id)
    enrollment = catalog.enroll_student(user, course)
    db.session.commit()

    log_activity(user.id, 'enroll_course', {'course_id': course.id}, request.remote_addr)

    return jsonify({
        'message': 'Successfully enrolled in course',
        'enrollment': enrollment.to_dict()
    }), 201


@api_bp.route('/courses/<int:course_id>/enroll', methods=['DELETE'])
@roles_required(ROLE_STUDENT)
def unenroll_from_course(user, course_id):
    """Leave a course; lesson progress is kept"""
    course = Course.query.get_or_404(course_id)
    catalog.unenroll_student(user, course)
    db.session.commit()

    log_activity(user.id, 'unenroll_course', {'course_id': course.id}, request.remote_addr)

    return jsonify({'message': 'Successfully unenrolled from course'}), 200


@api_bp.route('/enrollments', methods=['GET'])
@token_required
def get_my_enrollments(user):
    """Caller's enrollments"""
    status = request.args.get('status')
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 20, type=int), 100)

    query = Enrollment.query.filter_by(student_id=user.id)
    if status:
        if status.upper() not in ENROLLMENT_STATUSES:
            return jsonify({'error': 'Invalid status'}), 400
        query = query.filter_by(status=status.upper())
    else:
        query = query.filter(Enrollment.status != 'UNENROLLED')

    pagination = query.order_by(Enrollment.last_accessed_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'enrollments': [e.to_dict() for e in pagination.items],
        'pagination': _pagination(pagination, page)
    }), 200


# ==================== LESSON PROGRESS ====================

@api_bp.route('/lessons/<int:lesson_id>/progress', methods=['GET'])
@token_required
def get_lesson_progress(user, lesson_id):
    """Resume point and watch state of one lesson"""
    lesson = Lesson.query.get_or_404(lesson_id)
    if not catalog.get_enrollment(user, lesson.course):
        return jsonify({'error': 'Not enrolled in this course'}), 403

    record = progress.get_lesson_progress(user, lesson)
    data = record.to_dict() if record else {
        'lesson_id': lesson.id, 'watched_seconds': 0, 'last_position': 0,
        'completed': False, 'completed_at': None, 'updated_at': None
    }
    data['duration'] = lesson.duration or 0
    data['is_unlocked'] = progress.is_lesson_unlocked(user, lesson)
    return jsonify({'progress': data}), 200


@api_bp.route('/lessons/<int:lesson_id>/progress', methods=['POST'])
@limiter.limit(heartbeat_limit, key_func=user_or_ip_key)
@token_required
def post_lesson_progress(user, lesson_id):
    """Watch heartbeat from a player tab"""
    lesson = Lesson.query.get_or_404(lesson_id)
    data = request.get_json() or {}

    if 'watched_seconds' not in data:
        return jsonify({'error': 'watched_seconds required'}), 400

    result = progress.record_heartbeat(
        user, lesson,
        data['watched_seconds'],
        position=data.get('position'),
        client_id=data.get('client_id'),
        client_ts=progress.parse_client_timestamp(data.get('client_ts'))
    )
    db.session.commit()

    return jsonify({
        'progress': result.progress.to_dict(),
        'persisted': result.persisted,
        'stale': result.stale,
        'auto_completed': result.auto_completed,
        'completion': _completion_dict(result.completion)
    }), 200


@api_bp.route('/lessons/<int:lesson_id>/complete', methods=['POST'])
@token_required
def complete_lesson(user, lesson_id):
    """Mark a lesson complete"""
    lesson = Lesson.query.get_or_404(lesson_id)
    result = progress.mark_lesson_complete(user, lesson)
    db.session.commit()

    return jsonify({
        'message': 'Lesson already completed' if result.already_completed else 'Lesson completed',
        'progress': result.progress.to_dict(),
        **_completion_dict(result)
    }), 200


@api_bp.route('/progress/replay', methods=['POST'])
@token_required
def replay_progress(user):
    """Replay heartbeats queued while offline"""
    data = request.get_json() or {}
    if 'events' not in data:
        return jsonify({'error': 'events required'}), 400

    result = progress.replay_events(user, data['events'])
    db.session.commit()
    return jsonify(result), 200


@api_bp.route('/courses/<int:course_id>/progress', methods=['GET'])
@token_required
def get_course_progress(user, course_id):
    """Section and lesson progress for a course"""
    course = Course.query.get_or_404(course_id)
    data = progress.get_course_progress(user, course)
    data['time_spent'] = data['watched_duration']
    return jsonify({'progress': data}), 200


@api_bp.route('/sections/<int:section_id>/progress', methods=['GET'])
@token_required
def get_section_progress(user, section_id):
    section = Section.query.get_or_404(section_id)
    return jsonify({'section': progress.get_section_progress(user, section)}), 200


@api_bp.route('/courses/<int:course_id>/next-lesson', methods=['GET'])
@token_required
def get_next_lesson(user, course_id):
    """Where to continue learning"""
    course = Course.query.get_or_404(course_id)
    return jsonify(progress.get_next_lesson(user, course)), 200


@api_bp.route('/student/progress', methods=['GET'])
@token_required
def get_student_progress(user):
    """Progress across every enrollment plus XP summary"""
    enrollments = Enrollment.query.filter(
        Enrollment.student_id == user.id,
        Enrollment.status != 'UNENROLLED'
    ).order_by(Enrollment.last_accessed_at.desc()).all()

    courses = []
    for enrollment in enrollments:
        data = enrollment.to_dict()
        data['time_spent'] = progress.get_time_spent(user, enrollment.course)
        data['next_lesson'] = progress.get_next_lesson(user, enrollment.course)['next_lesson']
        courses.append(data)

    return jsonify({
        'courses': courses,
        'stats': {
            'enrolled': len(enrollments),
            'completed': sum(1 for e in enrollments if e.status == 'COMPLETED'),
            'time_spent': sum(c['time_spent'] for c in courses)
        },
        'gamification': gamification.get_student_summary(user)
    }), 200


# ==================== QUIZZES ====================

def _can_view_quiz(user, quiz):
    course = quiz.lesson.course
    return (user.is_admin() or course.teacher_id == user.id
            or catalog.get_active_enrollment(user, course) is not None)


@api_bp.route('/lessons/<int:lesson_id>/quiz', methods=['GET'])
@token_required
def get_lesson_quiz(user, lesson_id):
    """Quiz of a lesson without the answers"""
    lesson = Lesson.query.get_or_404(lesson_id)
    if lesson.quiz is None:
        return jsonify({'error': 'This lesson has no quiz'}), 404
    if not _can_view_quiz(user, lesson.quiz):
        return jsonify({'error': 'Not enrolled in this course'}), 403
    return jsonify({'quiz': lesson.quiz.to_dict()}), 200


@api_bp.route('/quizzes/<int:quiz_id>', methods=['GET'])
@token_required
def get_quiz(user, quiz_id):
    """Quiz without the answers"""
    quiz = Quiz.query.get_or_404(quiz_id)
    if not _can_view_quiz(user, quiz):
        return jsonify({'error': 'Not enrolled in this course'}), 403
    return jsonify({'quiz': quiz.to_dict()}), 200


@api_bp.route('/quizzes/<int:quiz_id>/submit', methods=['POST'])
@token_required
def submit_quiz(user, quiz_id):
    """Submit quiz answers"""
    quiz = Quiz.query.get_or_404(quiz_id)
    data = request.get_json() or {}

    result = quizzes.submit_quiz_attempt(user, quiz, data.get('answers'), data.get('time_taken'))
    db.session.commit()

    return jsonify({
        'message': 'Quiz passed' if result['passed'] else 'Quiz not passed',
        'result': result
    }), 200


@api_bp.route('/quizzes/<int:quiz_id>/attempts', methods=['GET'])
@token_required
def get_quiz_attempts(user, quiz_id):
    """Caller's attempts on a quiz"""
    quiz = Quiz.query.get_or_404(quiz_id)
    return jsonify(quizzes.get_attempts(user, quiz)), 200


# ==================== CERTIFICATES ====================

@api_bp.route('/certificates', methods=['GET'])
@token_required
def get_my_certificates(user):
    certificates = Certificate.query.filter_by(student_id=user.id).order_by(
        Certificate.issued_at.desc()
    ).all()
    return jsonify({'certificates': [c.to_dict() for c in certificates]}), 200


@api_bp.route('/certificates/<certificate_id>', methods=['GET'])
def verify_certificate(certificate_id):
    """Public certificate verification"""
    certificate = Certificate.query.filter_by(certificate_id=certificate_id.upper()).first()
    if not certificate:
        return jsonify({'valid': False, 'error': 'Certificate not found'}), 404
    return jsonify({'valid': True, 'certificate': certificate.to_dict()}), 200


# ==================== GAMIFICATION ====================

@api_bp.route('/gamification/progress', methods=['GET'])
@token_required
def get_gamification_progress(user):
    summary = gamification.get_student_summary(user)
    db.session.commit()
    return jsonify({'progress': summary}), 200


@api_bp.route('/gamification/badges', methods=['GET'])
@token_required
def get_badges(user):
    badges = gamification.get_badges_with_status(user)
    return jsonify({
        'badges': badges,
        'unlocked_count': sum(1 for b in badges if b['unlocked']),
        'total_count': len(badges)
    }), 200


@api_bp.route('/gamification/quests', methods=['GET'])
@token_required
def get_quests(user):
    data = gamification.get_active_quests(user)
    db.session.commit()
    return jsonify(data), 200


@api_bp.route('/gamification/leaderboard', methods=['GET'])
@token_required
def get_leaderboard(user):
    """Global or per-course XP leaderboard"""
    leaderboard_type = request.args.get('type', 'global')
    limit = request.args.get('limit', gamification.LEADERBOARD_DEFAULT_LIMIT)

    if leaderboard_type == 'global':
        data = gamification.get_global_leaderboard(limit, user)
    elif leaderboard_type == 'course':
        course_id = request.args.get('course_id', type=int)
        if not course_id:
            return jsonify({'error': 'course_id required for course leaderboard'}), 400
        course = Course.query.get_or_404(course_id)
        data = gamification.get_course_leaderboard(course, limit, user)
    else:
        return jsonify({'error': 'type must be global or course'}), 400

    return jsonify({'leaderboard': data}), 200
