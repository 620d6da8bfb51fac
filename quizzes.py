"""
Quiz grading. Retakes are unlimited; only the first pass of a quiz earns XP
and counts towards quiz quests.
"""
import logging
from datetime import datetime
from sqlalchemy import func
from models import db, QuizAttempt
from catalog import get_active_enrollment
from errors import QuizError
from progress import percent, check_course_completion
import gamification

logger = logging.getLogger(__name__)


def _parse_answers(answers):
    if not isinstance(answers, list) or not answers:
        raise QuizError('answers are required', 'MISSING_ANSWERS')

    parsed = []
    for answer in answers:
        if not isinstance(answer, dict):
            raise QuizError('Each answer needs question_id and selected_option_index', 'INVALID_ANSWER')
        question_id = answer.get('question_id')
        selected = answer.get('selected_option_index')
        if isinstance(question_id, bool) or not isinstance(question_id, int) \
                or isinstance(selected, bool) or not isinstance(selected, int):
            raise QuizError('Each answer needs question_id and selected_option_index', 'INVALID_ANSWER')
        parsed.append((question_id, selected))
    return parsed


def submit_quiz_attempt(student, quiz, answers, time_taken=None, now=None):
    """Grade and store an attempt. Returns the graded result."""
    now = now or datetime.utcnow()
    course = quiz.lesson.course
    enrollment = get_active_enrollment(student, course)
    if not enrollment:
        raise QuizError('Not enrolled in this course', 'NOT_ENROLLED', 403)

    if time_taken is not None and (isinstance(time_taken, bool) or not isinstance(time_taken, int)
                                   or time_taken < 0):
        raise QuizError('time_taken must be a non-negative number of seconds', 'INVALID_ANSWER')

    parsed = _parse_answers(answers)
    answered_ids = [question_id for question_id, _ in parsed]
    if len(answered_ids) != len(set(answered_ids)):
        raise QuizError('Each question can only be answered once', 'DUPLICATE_ANSWERS')

    questions = {question.id: question for question in quiz.questions}
    unknown = set(answered_ids) - set(questions)
    if unknown:
        raise QuizError(f'Unknown question ids: {sorted(unknown)}', 'UNKNOWN_QUESTION')
    missing = set(questions) - set(answered_ids)
    if missing:
        raise QuizError(f'Missing answers for questions: {sorted(missing)}', 'MISSING_ANSWERS')

    results = []
    correct = 0
    for question_id, selected in parsed:
        question = questions[question_id]
        if not 0 <= selected < len(question.options):
            raise QuizError(f'Option index out of range for question {question_id}', 'INVALID_ANSWER')
        is_correct = selected == question.correct_option_index
        correct += 1 if is_correct else 0
        results.append({
            'question_id': question_id,
            'selected_option_index': selected,
            'correct_option_index': question.correct_option_index,
            'is_correct': is_correct,
            'explanation': question.explanation
        })

    score = percent(correct, len(questions))
    passed = score >= quiz.passing_score
    previously_passed = QuizAttempt.query.filter_by(
        quiz_id=quiz.id, student_id=student.id, passed=True
    ).first() is not None

    attempt = QuizAttempt(
        quiz_id=quiz.id,
        student_id=student.id,
        score=score,
        passed=passed,
        answers=[{'question_id': q, 'selected_option_index': s} for q, s in parsed],
        time_taken=time_taken,
        created_at=now
    )
    db.session.add(attempt)
    db.session.flush()

    xp_awarded = 0
    if passed and not previously_passed:
        xp_awarded = gamification.award_xp(student, gamification.XP_AMOUNTS['QUIZ_PASS'],
                                           'QUIZ_PASS', quiz.id, now).xp_awarded
        gamification.update_quest_progress(student, 'QUIZ_COMPLETION', now=now)
    gamification.check_all_badges(student, now)

    course_result = check_course_completion(student, course, enrollment, now) if passed else None
    enrollment.last_accessed_at = now

    logger.info(f"Quiz {quiz.id} attempt by student {student.id}: {score}% passed={passed}")
    return {
        'attempt_id': attempt.id,
        'score': score,
        'passed': passed,
        'passing_score': quiz.passing_score,
        'correct_answers': correct,
        'total_questions': len(questions),
        'xp_awarded': xp_awarded,
        'best_score': best_score(student, quiz),
        'results': results,
        'course_completed': bool(course_result and course_result['newly_completed']),
        'certificate': course_result['certificate'] if course_result else None
    }


def best_score(student, quiz):
    return db.session.query(func.max(QuizAttempt.score)).filter(
        QuizAttempt.quiz_id == quiz.id, QuizAttempt.student_id == student.id
    ).scalar()


def get_attempts(student, quiz):
    attempts = QuizAttempt.query.filter_by(quiz_id=quiz.id, student_id=student.id).order_by(
        QuizAttempt.created_at, QuizAttempt.id
    ).all()
    return {
        'quiz_id': quiz.id,
        'attempts': [dict(a.to_dict(), attempt_number=i + 1) for i, a in enumerate(attempts)],
        'best_score': best_score(student, quiz),
        'passed': any(a.passed for a in attempts)
    }
