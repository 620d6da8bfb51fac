"""
Watch-progress engine.

The server owns lesson progress. Players send heartbeats (watched seconds,
resume position, client clock, tab id); the engine merges them:

- watched time only grows and is capped at the lesson duration
- the resume position is last-writer-wins on the client clock, so an old
  tab cannot drag a newer tab's position backwards
- heartbeats that change nothing meaningful are acknowledged but not written
- queues collected while offline are replayed in client-clock order, and each
  event id is applied once

Completing a lesson (explicitly or by crossing the watch threshold) fans out
to XP, streaks, quests, badges, enrollment progress and course completion.
"""
import math
import secrets
import string
import logging
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from flask import current_app
from sqlalchemy.exc import IntegrityError
from models import db, Lesson, LessonProgress, ProgressEvent, QuizAttempt, Certificate
from catalog import (
    ordered_sections, ordered_lessons, course_quizzes, get_enrollment, get_active_enrollment
)
from errors import ProgressError
import gamification

logger = logging.getLogger(__name__)

CERTIFICATE_ALPHABET = string.ascii_uppercase + string.digits

HeartbeatResult = namedtuple('HeartbeatResult', [
    'progress', 'persisted', 'stale', 'auto_completed', 'completion'
])

CompletionResult = namedtuple('CompletionResult', [
    'progress', 'xp_awarded', 'already_completed', 'streak', 'enrollment_progress',
    'course_completed', 'certificate'
])


def percent(part, whole):
    """Whole-number percentage, halves rounded up"""
    if not whole:
        return 0
    return int(part * 100 / whole + 0.5)


def _setting(name):
    return current_app.config[name]


# ==================== INPUT NORMALISATION ====================

def as_seconds(value, field):
    if isinstance(value, bool) or not isinstance(value, (int, float)) \
            or not math.isfinite(value) or value < 0:
        raise ProgressError(f'{field} must be a non-negative number', 'INVALID_PROGRESS')
    return int(value)


def parse_client_timestamp(value):
    """ISO-8601 string or epoch milliseconds to a naive UTC datetime"""
    if value is None:
        return None
    try:
        if isinstance(value, bool):
            raise ValueError(value)
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        else:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except (ValueError, OverflowError, OSError):
        raise ProgressError('client_ts must be an ISO-8601 timestamp or epoch milliseconds',
                            'INVALID_PROGRESS')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _clamp_client_ts(client_ts, now):
    if client_ts is None:
        return now
    latest = now + timedelta(seconds=_setting('PROGRESS_CLOCK_SKEW_SECONDS'))
    return min(client_ts, latest)


# ==================== ACCESS ====================

def completed_lesson_ids(student, lessons):
    ids = [lesson.id for lesson in lessons]
    if not ids:
        return set()
    rows = db.session.query(LessonProgress.lesson_id).filter(
        LessonProgress.student_id == student.id,
        LessonProgress.lesson_id.in_(ids),
        LessonProgress.completed.is_(True)
    ).all()
    return {row[0] for row in rows}


def lesson_unlock_map(course, lessons, completed_ids):
    """lesson id -> unlocked; sequential courses need the previous lesson completed"""
    unlocked = {}
    for i, lesson in enumerate(lessons):
        if not course.require_sequential_progress or i == 0:
            unlocked[lesson.id] = True
        else:
            unlocked[lesson.id] = lessons[i - 1].id in completed_ids
    return unlocked


def is_lesson_unlocked(student, lesson):
    course = lesson.course
    if not course.require_sequential_progress:
        return True
    lessons = ordered_lessons(course)
    unlocked = lesson_unlock_map(course, lessons, completed_lesson_ids(student, lessons))
    return unlocked.get(lesson.id, False)


def require_lesson_access(student, lesson):
    """Active enrollment and unlocked lesson, or ProgressError"""
    course = lesson.course
    enrollment = get_active_enrollment(student, course)
    if not enrollment:
        raise ProgressError('Not enrolled in this course', 'NOT_ENROLLED', 403)
    if not is_lesson_unlocked(student, lesson):
        raise ProgressError('Complete the previous lesson first', 'LESSON_LOCKED', 403)
    return course, enrollment


def get_lesson_progress(student, lesson):
    return LessonProgress.query.filter_by(student_id=student.id, lesson_id=lesson.id).first()


def _new_progress(student, lesson, now):
    """Insert a progress row; when another tab won the race, return its row instead"""
    record = LessonProgress(
        student_id=student.id,
        lesson_id=lesson.id,
        watched_seconds=0,
        last_position=0,
        completed=False,
        created_at=now,
        updated_at=now
    )
    try:
        with db.session.begin_nested():
            db.session.add(record)
    except IntegrityError:
        logger.info(f"Concurrent progress insert for lesson {lesson.id}, student {student.id}; merging")
        return get_lesson_progress(student, lesson), False
    return record, True


# ==================== HEARTBEATS ====================

def _is_meaningful(record, watched, position, threshold_crossed, now):
    debounce = _setting('PROGRESS_DEBOUNCE_SECONDS')
    watched_delta = watched - (record.watched_seconds or 0)
    position_delta = abs(position - (record.last_position or 0)) if position is not None else 0

    if threshold_crossed:
        return True
    if watched_delta >= debounce or position_delta >= debounce:
        return True
    if watched_delta > 0 or position_delta > 0:
        last_write = record.updated_at or record.created_at
        return last_write is None or (now - last_write).total_seconds() >= _setting('PROGRESS_DEBOUNCE_INTERVAL')
    return False


def record_heartbeat(student, lesson, watched_seconds, position=None, client_id=None,
                     client_ts=None, now=None, debounce=True):
    """Merge one watch report into the student's lesson progress"""
    now = now or datetime.utcnow()
    watched = as_seconds(watched_seconds, 'watched_seconds')
    if position is not None:
        position = as_seconds(position, 'position')

    course, enrollment = require_lesson_access(student, lesson)

    duration = lesson.duration or 0
    if duration > 0:
        watched = min(watched, duration)
        if position is not None:
            position = min(position, duration)

    client_ts = _clamp_client_ts(client_ts, now)
    record = get_lesson_progress(student, lesson)
    is_new = False
    if record is None:
        record, is_new = _new_progress(student, lesson, now)

    stale = bool(record.position_updated_at and client_ts < record.position_updated_at)
    if stale:
        position = None

    if record.completed:
        # Completed lessons only keep the resume point fresh
        if position is None or (debounce and not _is_meaningful(record, record.watched_seconds or 0,
                                                                 position, False, now)):
            return HeartbeatResult(record, False, stale, False, None)
        record.last_position = position
        record.position_updated_at = client_ts
        record.last_client_id = client_id
        record.updated_at = now
        enrollment.last_accessed_at = now
        db.session.flush()
        return HeartbeatResult(record, True, stale, False, None)

    merged_watched = max(record.watched_seconds or 0, watched)
    threshold = duration * _setting('PROGRESS_COMPLETION_THRESHOLD')
    threshold_crossed = duration > 0 and merged_watched >= threshold

    if not is_new and debounce and not _is_meaningful(record, merged_watched, position,
                                                       threshold_crossed, now):
        return HeartbeatResult(record, False, stale, False, None)

    record.watched_seconds = merged_watched
    if position is not None:
        record.last_position = position
        record.position_updated_at = client_ts
        record.last_client_id = client_id
    record.updated_at = now
    enrollment.last_accessed_at = now
    db.session.flush()

    completion = None
    if threshold_crossed:
        completion = complete_lesson(student, lesson, record, course, enrollment, now)
        logger.info(f"Lesson {lesson.id} auto-completed for student {student.id}")

    return HeartbeatResult(record, True, stale, completion is not None, completion)


# ==================== OFFLINE REPLAY ====================

def _rejected(event_id, reason):
    return {'event_id': event_id, 'status': 'rejected', 'reason': reason}


REPLAY_REJECTIONS = {
    'NOT_ENROLLED': 'not_enrolled',
    'LESSON_LOCKED': 'locked',
    'INVALID_PROGRESS': 'invalid',
}


def replay_events(student, events, now=None):
    """
    Apply a queue of heartbeats recorded while offline.
    Each event: {event_id, lesson_id, watched_seconds, position, client_ts, client_id}.
    Returns one result per input event, in input order.
    """
    now = now or datetime.utcnow()
    if not isinstance(events, list):
        raise ProgressError('events must be a list', 'INVALID_REPLAY')
    if len(events) > _setting('PROGRESS_REPLAY_MAX_EVENTS'):
        raise ProgressError(f"At most {_setting('PROGRESS_REPLAY_MAX_EVENTS')} events per replay",
                            'REPLAY_TOO_LARGE')

    oldest = now - timedelta(days=_setting('PROGRESS_REPLAY_MAX_AGE_DAYS'))
    results = [None] * len(events)
    seen = set()
    accepted = []

    for i, event in enumerate(events):
        raw_id = event.get('event_id') if isinstance(event, dict) else None
        event_id = str(raw_id).strip() if raw_id is not None else ''
        if not event_id:
            results[i] = _rejected(None, 'invalid')
            continue
        if event_id in seen or ProgressEvent.query.filter_by(
                student_id=student.id, event_id=event_id).first():
            results[i] = {'event_id': event_id, 'status': 'duplicate'}
            continue

        try:
            watched = as_seconds(event.get('watched_seconds'), 'watched_seconds')
            position = event.get('position')
            if position is not None:
                position = as_seconds(position, 'position')
            client_ts = parse_client_timestamp(event.get('client_ts'))
        except ProgressError:
            results[i] = _rejected(event_id, 'invalid')
            continue
        if client_ts is None:
            results[i] = _rejected(event_id, 'invalid')
            continue
        if client_ts < oldest:
            results[i] = _rejected(event_id, 'too_old')
            continue

        lesson_id = event.get('lesson_id')
        lesson = db.session.get(Lesson, lesson_id) if isinstance(lesson_id, int) else None
        if not lesson:
            results[i] = _rejected(event_id, 'lesson_not_found')
            continue

        seen.add(event_id)
        accepted.append((client_ts, event_id, i, lesson, watched, position, event.get('client_id')))

    accepted.sort(key=lambda item: (item[0], item[1]))

    def apply(item):
        client_ts, event_id, i, lesson, watched, position, client_id = item
        try:
            result = record_heartbeat(student, lesson, watched, position, client_id,
                                      client_ts, now, debounce=False)
        except ProgressError as e:
            results[i] = _rejected(event_id, REPLAY_REJECTIONS.get(e.code, 'invalid'))
            return e.code
        db.session.add(ProgressEvent(student_id=student.id, event_id=event_id,
                                     lesson_id=lesson.id, applied_at=now))
        results[i] = {'event_id': event_id, 'status': 'applied',
                      'auto_completed': result.auto_completed}
        return None

    # Events for a lesson that unlocks later in the same queue get a second pass
    deferred = [item for item in accepted if apply(item) == 'LESSON_LOCKED']
    for item in deferred:
        apply(item)
    db.session.flush()

    summary = {'applied': 0, 'duplicate': 0, 'rejected': 0}
    for result in results:
        summary[result['status']] += 1

    lessons = {}
    for _, _, _, lesson, _, _, _ in accepted:
        record = get_lesson_progress(student, lesson)
        if record:
            lessons[lesson.id] = record.to_dict()

    logger.info(f"Replayed {len(events)} events for student {student.id}: {summary}")
    return {'results': results, 'summary': summary, 'lessons': lessons}


# ==================== COMPLETION ====================

def mark_lesson_complete(student, lesson, now=None):
    """Explicitly complete a lesson; completing twice awards nothing new"""
    now = now or datetime.utcnow()
    course, enrollment = require_lesson_access(student, lesson)
    record = get_lesson_progress(student, lesson) or _new_progress(student, lesson, now)[0]
    return complete_lesson(student, lesson, record, course, enrollment, now)


def complete_lesson(student, lesson, record, course, enrollment, now):
    already_completed = bool(record.completed)
    record.watched_seconds = max(record.watched_seconds or 0, lesson.duration or 0)
    record.updated_at = now

    if already_completed:
        db.session.flush()
        return CompletionResult(record, 0, True, None, enrollment.progress or 0, False, None)

    record.completed = True
    record.completed_at = now
    db.session.flush()

    award = gamification.award_xp(student, gamification.XP_AMOUNTS['LESSON_COMPLETE'],
                                  'LESSON_COMPLETE', lesson.id, now)
    streak = gamification.update_streak(student, now)
    gamification.update_quest_progress(student, 'LESSON_COMPLETION', now=now)
    gamification.check_all_badges(student, now)

    enrollment_progress = recompute_enrollment_progress(student, course, enrollment)
    enrollment.last_accessed_at = now
    course_result = check_course_completion(student, course, enrollment, now)

    logger.info(f"Lesson {lesson.id} completed by student {student.id} ({enrollment_progress}%)")
    return CompletionResult(
        record,
        award.xp_awarded,
        False,
        streak._asdict(),
        enrollment.progress,
        bool(course_result and course_result['newly_completed']),
        course_result['certificate'] if course_result else None
    )


def recompute_enrollment_progress(student, course, enrollment=None):
    enrollment = enrollment or get_enrollment(student, course)
    lessons = ordered_lessons(course)
    value = percent(len(completed_lesson_ids(student, lessons)), len(lessons))
    if enrollment:
        enrollment.progress = 100 if enrollment.status == 'COMPLETED' else value
    return value


def passed_quiz_ids(student, quizzes):
    ids = [quiz.id for quiz in quizzes]
    if not ids:
        return set()
    rows = db.session.query(QuizAttempt.quiz_id).filter(
        QuizAttempt.student_id == student.id,
        QuizAttempt.quiz_id.in_(ids),
        QuizAttempt.passed.is_(True)
    ).distinct().all()
    return {row[0] for row in rows}


def check_course_completion(student, course, enrollment, now=None):
    """
    Complete the enrollment when every lesson is completed and every quiz
    passed. Rewards and the certificate are only granted the first time.
    """
    now = now or datetime.utcnow()
    lessons = ordered_lessons(course)
    if not lessons:
        return None
    if len(completed_lesson_ids(student, lessons)) < len(lessons):
        return None
    quizzes = course_quizzes(course)
    if len(passed_quiz_ids(student, quizzes)) < len(quizzes):
        return None

    if enrollment.status == 'COMPLETED':
        return {'newly_completed': False, 'certificate': None}

    enrollment.status = 'COMPLETED'
    enrollment.progress = 100
    enrollment.completed_at = now
    db.session.flush()

    gamification.award_xp(student, gamification.XP_AMOUNTS['COURSE_COMPLETE'],
                          'COURSE_COMPLETE', course.id, now)
    gamification.update_quest_progress(student, 'COURSE_COMPLETION', now=now)
    gamification.check_all_badges(student, now)
    certificate = issue_certificate(student, course, now)

    logger.info(f"Course {course.id} completed by student {student.id}")
    return {'newly_completed': True, 'certificate': certificate.to_dict()}


def generate_certificate_id():
    groups = [''.join(secrets.choice(CERTIFICATE_ALPHABET) for _ in range(4)) for _ in range(3)]
    return '-'.join(groups)


def issue_certificate(student, course, now=None):
    certificate = Certificate.query.filter_by(student_id=student.id, course_id=course.id).first()
    if certificate:
        return certificate

    certificate_id = generate_certificate_id()
    while Certificate.query.filter_by(certificate_id=certificate_id).first():
        certificate_id = generate_certificate_id()

    certificate = Certificate(student_id=student.id, course_id=course.id,
                              certificate_id=certificate_id, issued_at=now or datetime.utcnow())
    db.session.add(certificate)
    db.session.flush()
    return certificate


# ==================== AGGREGATION ====================

def _progress_records(student, lessons):
    ids = [lesson.id for lesson in lessons]
    if not ids:
        return {}
    rows = LessonProgress.query.filter(
        LessonProgress.student_id == student.id,
        LessonProgress.lesson_id.in_(ids)
    ).all()
    return {row.lesson_id: row for row in rows}


def get_course_progress(student, course):
    """Per-section and per-lesson progress of an enrolled student"""
    enrollment = get_enrollment(student, course)
    if not enrollment:
        raise ProgressError('Not enrolled in this course', 'NOT_ENROLLED', 403)

    lessons = ordered_lessons(course)
    records = _progress_records(student, lessons)
    completed_ids = {lesson_id for lesson_id, row in records.items() if row.completed}
    unlocked = lesson_unlock_map(course, lessons, completed_ids)
    passed = passed_quiz_ids(student, course_quizzes(course))
    unlock_threshold = _setting('PROGRESS_SECTION_UNLOCK_THRESHOLD') * 100

    sections = []
    previous_pct = None
    for section in ordered_sections(course):
        section_lessons = sorted(section.lessons, key=lambda l: (l.order, l.id))
        done = sum(1 for lesson in section_lessons if lesson.id in completed_ids)
        pct = percent(done, len(section_lessons))
        section_unlocked = (not course.require_sequential_progress or previous_pct is None
                            or previous_pct >= unlock_threshold)
        sections.append({
            'id': section.id,
            'title': section.title,
            'order': section.order,
            'total_lessons': len(section_lessons),
            'completed_lessons': done,
            'progress_percentage': pct,
            'is_unlocked': section_unlocked,
            'lessons': [{
                'id': lesson.id,
                'title': lesson.title,
                'type': lesson.type,
                'duration': lesson.duration or 0,
                'watched_seconds': records[lesson.id].watched_seconds if lesson.id in records else 0,
                'last_position': records[lesson.id].last_position if lesson.id in records else 0,
                'completed': lesson.id in completed_ids,
                'is_unlocked': unlocked[lesson.id],
                'has_quiz': lesson.quiz is not None,
                'quiz_passed': lesson.quiz is not None and lesson.quiz.id in passed
            } for lesson in section_lessons]
        })
        previous_pct = pct

    total_duration = sum(lesson.duration or 0 for lesson in lessons)
    watched_duration = sum(row.watched_seconds or 0 for row in records.values())

    return {
        'course_id': course.id,
        'enrollment_status': enrollment.status,
        'total_lessons': len(lessons),
        'completed_lessons': len(completed_ids),
        'completed_lesson_ids': sorted(completed_ids),
        'progress_percentage': percent(len(completed_ids), len(lessons)),
        'total_duration': total_duration,
        'watched_duration': watched_duration,
        'is_completed': enrollment.status == 'COMPLETED',
        'sections': sections,
        'next_lesson': _next_lesson(sections)
    }


def _next_lesson(sections):
    for section in sections:
        if not section['is_unlocked']:
            continue
        for lesson in section['lessons']:
            if not lesson['completed'] and lesson['is_unlocked']:
                return {
                    'lesson_id': lesson['id'],
                    'title': lesson['title'],
                    'section_id': section['id'],
                    'section_title': section['title'],
                    'resume_position': lesson['last_position']
                }
    return None


def get_next_lesson(student, course):
    data = get_course_progress(student, course)
    return {
        'next_lesson': data['next_lesson'],
        'course_completed': data['next_lesson'] is None and data['completed_lessons'] == data['total_lessons']
    }


def get_section_progress(student, section):
    data = get_course_progress(student, section.course)
    for summary in data['sections']:
        if summary['id'] == section.id:
            return summary
    return None


def get_time_spent(student, course):
    """Seconds of video watched across a course"""
    lessons = ordered_lessons(course)
    return sum(row.watched_seconds or 0 for row in _progress_records(student, lessons).values())
