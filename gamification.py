"""
Gamification engine: XP ledger, levels, learning streaks, badges,
quests and leaderboards.

Every XP award is keyed by (user, reason, source_id). Replaying the same
event never grants XP twice; the unique constraint on XPActivity backs this
up when two requests race.
"""
import logging
from collections import namedtuple
from datetime import datetime, date, timedelta
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from models import (
    db, User, UserProgress, XPActivity, BadgeDefinition, UserBadge, Quest,
    UserQuest, LessonProgress, QuizAttempt, Enrollment, ROLE_STUDENT
)
from errors import GamificationError

logger = logging.getLogger(__name__)

# ==================== CONSTANTS ====================

XP_AMOUNTS = {
    'LESSON_COMPLETE': 10,
    'QUIZ_PASS': 20,
    'COURSE_COMPLETE': 50,
    'DAILY_LOGIN': 5,
    'STREAK_BONUS_7': 25,
    'STREAK_BONUS_30': 100,
    'STREAK_BONUS_100': 500,
}

XP_REASONS = [
    'LESSON_COMPLETE', 'QUIZ_PASS', 'COURSE_COMPLETE', 'DAILY_LOGIN',
    'STREAK_BONUS', 'BADGE_UNLOCKED', 'QUEST_COMPLETE'
]

STREAK_MILESTONES = {
    7: XP_AMOUNTS['STREAK_BONUS_7'],
    30: XP_AMOUNTS['STREAK_BONUS_30'],
    100: XP_AMOUNTS['STREAK_BONUS_100'],
}

LEVEL_THRESHOLDS = [0, 100, 250, 500, 1000, 2000, 3500, 5500, 8000, 11000, 15000]
XP_PER_LEVEL_BEYOND_MAX = 5000

QUEST_TYPES = ['LESSON_COMPLETION', 'QUIZ_COMPLETION', 'COURSE_COMPLETION', 'LOGIN_STREAK']
QUEST_FREQUENCIES = ['DAILY', 'WEEKLY', 'MONTHLY', 'ONE_TIME']
ONE_TIME_PERIOD = date(1970, 1, 1)

LEADERBOARD_DEFAULT_LIMIT = 10
LEADERBOARD_MAX_LIMIT = 50

AwardResult = namedtuple('AwardResult', [
    'previous_xp', 'new_xp', 'xp_awarded', 'previous_level', 'new_level',
    'leveled_up', 'duplicate'
])

StreakResult = namedtuple('StreakResult', [
    'current_streak', 'longest_streak', 'incremented', 'reset', 'bonus_xp'
])


# ==================== LEVELS ====================

def calculate_level(total_xp):
    """Level for a total XP amount (levels start at 1)"""
    total_xp = max(0, total_xp or 0)
    level = 1
    for i in range(1, len(LEVEL_THRESHOLDS)):
        if total_xp >= LEVEL_THRESHOLDS[i]:
            level = i + 1
        else:
            break

    max_threshold = LEVEL_THRESHOLDS[-1]
    if total_xp >= max_threshold:
        level = len(LEVEL_THRESHOLDS) + (total_xp - max_threshold) // XP_PER_LEVEL_BEYOND_MAX
    return level


def xp_for_level(level):
    """Total XP at which a level starts"""
    if level <= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[max(level, 1) - 1]
    return LEVEL_THRESHOLDS[-1] + (level - len(LEVEL_THRESHOLDS)) * XP_PER_LEVEL_BEYOND_MAX


def xp_to_next_level(level, total_xp):
    return xp_for_level(level + 1) - (total_xp or 0)


# ==================== XP LEDGER ====================

def get_or_create_user_progress(user):
    progress = UserProgress.query.filter_by(user_id=user.id).first()
    if not progress:
        progress = UserProgress(user_id=user.id, total_xp=0, current_level=1,
                                current_streak=0, longest_streak=0)
        db.session.add(progress)
        db.session.flush()
    return progress


def award_xp(user, amount, reason, source_id=None, now=None):
    """Add XP to a user. Awarding the same (reason, source_id) twice is a no-op."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise GamificationError('XP amount must be a positive integer', 'INVALID_XP_AMOUNT')
    if reason not in XP_REASONS:
        raise GamificationError(f'Unknown XP reason: {reason}', 'INVALID_XP_REASON')

    now = now or datetime.utcnow()
    source_key = str(source_id) if source_id is not None else None

    progress = get_or_create_user_progress(user)
    previous_xp = progress.total_xp or 0
    previous_level = progress.current_level or 1
    duplicate = AwardResult(previous_xp, previous_xp, 0, previous_level, previous_level, False, True)

    if source_key is not None:
        existing = XPActivity.query.filter_by(
            user_id=user.id, reason=reason, source_id=source_key
        ).first()
        if existing:
            return duplicate

    try:
        with db.session.begin_nested():
            db.session.add(XPActivity(user_id=user.id, amount=amount, reason=reason,
                                      source_id=source_key, created_at=now))
    except IntegrityError:
        logger.info(f"Concurrent duplicate XP award ignored: user={user.id} {reason}:{source_key}")
        return duplicate

    new_xp = previous_xp + amount
    new_level = calculate_level(new_xp)
    progress.total_xp = new_xp
    progress.current_level = new_level
    progress.last_activity_at = now
    db.session.flush()

    if new_level > previous_level:
        logger.info(f"User {user.id} leveled up: {previous_level} -> {new_level}")
    logger.debug(f"Awarded {amount} XP to user {user.id} for {reason}:{source_key}")

    return AwardResult(previous_xp, new_xp, amount, previous_level, new_level,
                       new_level > previous_level, False)


def award_daily_login(user, now=None):
    """Daily login bonus, at most once per calendar day"""
    now = now or datetime.utcnow()
    return award_xp(user, XP_AMOUNTS['DAILY_LOGIN'], 'DAILY_LOGIN', now.date().isoformat(), now)


# ==================== STREAKS ====================

def update_streak(user, now=None):
    """Record learning activity for today and advance the daily streak"""
    now = now or datetime.utcnow()
    today = now.date()
    progress = get_or_create_user_progress(user)

    last_day = progress.last_lesson_date
    previous_streak = progress.current_streak or 0
    incremented = False
    reset = False

    if last_day is None:
        current_streak = 1
        incremented = True
    elif last_day >= today:
        current_streak = max(previous_streak, 1)
    elif last_day == today - timedelta(days=1):
        current_streak = previous_streak + 1
        incremented = True
    else:
        current_streak = 1
        reset = previous_streak > 0

    progress.current_streak = current_streak
    progress.longest_streak = max(current_streak, progress.longest_streak or 0)
    if last_day is None or today > last_day:
        progress.last_lesson_date = today

    bonus_xp = 0
    if incremented and current_streak in STREAK_MILESTONES:
        result = award_xp(user, STREAK_MILESTONES[current_streak], 'STREAK_BONUS',
                          f'streak_{current_streak}:{today.isoformat()}', now)
        bonus_xp = result.xp_awarded
        logger.info(f"User {user.id} reached a {current_streak}-day streak")

    update_quest_progress(user, 'LOGIN_STREAK', value=current_streak, now=now)

    return StreakResult(current_streak, progress.longest_streak, incremented, reset, bonus_xp)


# ==================== BADGES ====================

def _completed_lesson_count(user):
    return LessonProgress.query.filter_by(student_id=user.id, completed=True).count()


def _completed_course_count(user):
    return Enrollment.query.filter_by(student_id=user.id, status='COMPLETED').count()


def _current_streak(user):
    progress = UserProgress.query.filter_by(user_id=user.id).first()
    return progress.current_streak if progress else 0


def _passed_quiz_count(user):
    return db.session.query(func.count(func.distinct(QuizAttempt.quiz_id))).filter(
        QuizAttempt.student_id == user.id, QuizAttempt.passed.is_(True)
    ).scalar() or 0


def _perfect_quiz_count(user):
    return db.session.query(func.count(func.distinct(QuizAttempt.quiz_id))).filter(
        QuizAttempt.student_id == user.id, QuizAttempt.score >= 100
    ).scalar() or 0


def _lessons_completed_on(user, day):
    start = datetime.combine(day, datetime.min.time())
    return LessonProgress.query.filter(
        LessonProgress.student_id == user.id,
        LessonProgress.completed.is_(True),
        LessonProgress.completed_at >= start,
        LessonProgress.completed_at < start + timedelta(days=1)
    ).count()


BADGE_CRITERIA = {
    'lesson_count': lambda user, now: _completed_lesson_count(user),
    'course_count': lambda user, now: _completed_course_count(user),
    'streak': lambda user, now: _current_streak(user),
    'quiz_pass_count': lambda user, now: _passed_quiz_count(user),
    'perfect_quizzes': lambda user, now: _perfect_quiz_count(user),
    'lessons_per_day': lambda user, now: _lessons_completed_on(user, now.date()),
}


def award_badge(user, badge_key, now=None):
    """Unlock a badge by key. Returns the badge, or None when already held."""
    now = now or datetime.utcnow()
    badge = BadgeDefinition.query.filter_by(key=badge_key, is_active=True).first()
    if not badge:
        logger.warning(f"Unknown badge requested: {badge_key}")
        return None

    if UserBadge.query.filter_by(user_id=user.id, badge_id=badge.id).first():
        return None

    try:
        with db.session.begin_nested():
            db.session.add(UserBadge(user_id=user.id, badge_id=badge.id, unlocked_at=now))
    except IntegrityError:
        return None

    if badge.xp_reward:
        award_xp(user, badge.xp_reward, 'BADGE_UNLOCKED', badge.key, now)
    logger.info(f"User {user.id} unlocked badge {badge.key}")
    return badge


def check_all_badges(user, now=None):
    """Evaluate every locked badge and unlock the ones whose criteria are met"""
    now = now or datetime.utcnow()
    held = {ub.badge_id for ub in UserBadge.query.filter_by(user_id=user.id).all()}
    stats = {}
    unlocked = []

    for badge in BadgeDefinition.query.filter_by(is_active=True).order_by(BadgeDefinition.id).all():
        if badge.id in held or badge.criteria_type not in BADGE_CRITERIA:
            continue
        if badge.criteria_type not in stats:
            stats[badge.criteria_type] = BADGE_CRITERIA[badge.criteria_type](user, now)
        if stats[badge.criteria_type] >= (badge.criteria_value or 0):
            if award_badge(user, badge.key, now):
                unlocked.append(badge)

    return unlocked


def get_badges_with_status(user):
    """All badges with unlock state and progress towards them"""
    unlocked = {ub.badge_id: ub for ub in UserBadge.query.filter_by(user_id=user.id).all()}
    now = datetime.utcnow()
    stats = {}
    badges = []

    for badge in BadgeDefinition.query.filter_by(is_active=True).order_by(BadgeDefinition.id).all():
        data = badge.to_dict()
        user_badge = unlocked.get(badge.id)
        if user_badge:
            data['unlocked'] = True
            data['unlocked_at'] = user_badge.unlocked_at.isoformat()
            data['progress'] = badge.criteria_value
        else:
            if badge.criteria_type in BADGE_CRITERIA and badge.criteria_type not in stats:
                stats[badge.criteria_type] = BADGE_CRITERIA[badge.criteria_type](user, now)
            data['unlocked'] = False
            data['unlocked_at'] = None
            data['progress'] = min(stats.get(badge.criteria_type, 0), badge.criteria_value or 0)
        badges.append(data)

    return badges


# ==================== QUESTS ====================

def period_start_for(frequency, day):
    if frequency == 'DAILY':
        return day
    if frequency == 'WEEKLY':
        return day - timedelta(days=day.weekday())
    if frequency == 'MONTHLY':
        return day.replace(day=1)
    return ONE_TIME_PERIOD


def period_end_for(frequency, day):
    """Exclusive end of the period containing `day` (None for one-time quests)"""
    start = period_start_for(frequency, day)
    if frequency == 'DAILY':
        return start + timedelta(days=1)
    if frequency == 'WEEKLY':
        return start + timedelta(days=7)
    if frequency == 'MONTHLY':
        if start.month == 12:
            return date(start.year + 1, 1, 1)
        return date(start.year, start.month + 1, 1)
    return None


def _get_or_create_user_quest(user, quest, period_start):
    user_quest = UserQuest.query.filter_by(
        user_id=user.id, quest_id=quest.id, period_start=period_start
    ).first()
    if not user_quest:
        user_quest = UserQuest(user_id=user.id, quest_id=quest.id, period_start=period_start,
                               current_progress=0, status='IN_PROGRESS')
        db.session.add(user_quest)
        db.session.flush()
    return user_quest


def update_quest_progress(user, quest_type, increment=1, value=None, now=None):
    """
    Advance every active quest of a type for the current period.
    `value` sets progress outright (streak quests); otherwise `increment` is added.
    Returns the quests completed by this call.
    """
    if quest_type not in QUEST_TYPES:
        raise GamificationError(f'Unknown quest type: {quest_type}', 'INVALID_QUEST_TYPE')

    now = now or datetime.utcnow()
    completed = []

    for quest in Quest.query.filter_by(type=quest_type, is_active=True).order_by(Quest.id).all():
        period_start = period_start_for(quest.frequency, now.date())
        user_quest = _get_or_create_user_quest(user, quest, period_start)
        if user_quest.status != 'IN_PROGRESS':
            continue

        if value is not None:
            user_quest.current_progress = value
        else:
            user_quest.current_progress = (user_quest.current_progress or 0) + increment

        if user_quest.current_progress >= quest.target_value:
            user_quest.current_progress = quest.target_value
            user_quest.status = 'COMPLETED'
            user_quest.completed_at = now
            if quest.xp_reward:
                award_xp(user, quest.xp_reward, 'QUEST_COMPLETE',
                         f'{quest.key}:{period_start.isoformat()}', now)
            if quest.badge_reward:
                award_badge(user, quest.badge_reward, now)
            logger.info(f"User {user.id} completed quest {quest.key}")
            completed.append(quest)

    db.session.flush()
    return completed


def expire_stale_quests(user, now=None):
    """Mark unfinished quests from past periods as expired"""
    now = now or datetime.utcnow()
    expired = 0
    rows = UserQuest.query.filter_by(user_id=user.id, status='IN_PROGRESS').all()
    for user_quest in rows:
        frequency = user_quest.quest.frequency
        if frequency == 'ONE_TIME':
            continue
        if user_quest.period_start < period_start_for(frequency, now.date()):
            user_quest.status = 'EXPIRED'
            expired += 1
    if expired:
        db.session.flush()
    return expired


def get_active_quests(user, now=None):
    """Current-period quests grouped by frequency with summary stats"""
    now = now or datetime.utcnow()
    expire_stale_quests(user, now)

    grouped = {frequency: [] for frequency in QUEST_FREQUENCIES}
    stats = {'total': 0, 'completed': 0, 'in_progress': 0, 'total_available_xp': 0}

    for quest in Quest.query.filter_by(is_active=True).order_by(Quest.id).all():
        period_start = period_start_for(quest.frequency, now.date())
        user_quest = UserQuest.query.filter_by(
            user_id=user.id, quest_id=quest.id, period_start=period_start
        ).first()
        progress = user_quest.current_progress if user_quest else 0
        status = user_quest.status if user_quest else 'IN_PROGRESS'

        period_end = period_end_for(quest.frequency, now.date())
        resets_in = None
        if period_end:
            resets_in = int((datetime.combine(period_end, datetime.min.time()) - now).total_seconds())

        grouped.setdefault(quest.frequency, []).append({
            'key': quest.key,
            'title': quest.title,
            'description': quest.description,
            'type': quest.type,
            'frequency': quest.frequency,
            'target_value': quest.target_value,
            'current_progress': progress,
            'percentage': min(100, round(progress / quest.target_value * 100)) if quest.target_value else 0,
            'status': status,
            'xp_reward': quest.xp_reward,
            'badge_reward': quest.badge_reward,
            'completed_at': user_quest.completed_at.isoformat() if user_quest and user_quest.completed_at else None,
            'resets_in_seconds': resets_in
        })

        stats['total'] += 1
        if status == 'COMPLETED':
            stats['completed'] += 1
        else:
            stats['total_available_xp'] += quest.xp_reward or 0
            if progress > 0:
                stats['in_progress'] += 1

    return {'quests': grouped, 'stats': stats}


# ==================== LEADERBOARDS ====================

def clamp_limit(limit):
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return LEADERBOARD_DEFAULT_LIMIT
    return max(1, min(LEADERBOARD_MAX_LIMIT, limit))


def _leaderboard_rows(query, limit):
    xp = func.coalesce(UserProgress.total_xp, 0)
    level = func.coalesce(UserProgress.current_level, 1)
    rows = query.add_columns(xp.label('total_xp'), level.label('level')).order_by(
        xp.desc(), User.id.asc()
    ).limit(limit).all()
    return [{
        'rank': i + 1,
        'user_id': user.id,
        'name': user.name,
        'profile_picture': user.profile_picture,
        'total_xp': total_xp,
        'level': level_value
    } for i, (user, total_xp, level_value) in enumerate(rows)]


def _rank_of(query, user):
    """1-based rank of `user` inside a leaderboard query, or None if absent"""
    xp = func.coalesce(UserProgress.total_xp, 0)
    mine = query.add_columns(xp.label('total_xp')).filter(User.id == user.id).first()
    if not mine:
        return None
    my_xp = mine[1]
    ahead = query.filter(
        (xp > my_xp) | ((xp == my_xp) & (User.id < user.id))
    ).count()
    return ahead + 1


def _student_query():
    return db.session.query(User).outerjoin(UserProgress, UserProgress.user_id == User.id).filter(
        User.role == ROLE_STUDENT, User.is_active.is_(True)
    )


def get_global_leaderboard(limit=LEADERBOARD_DEFAULT_LIMIT, user=None):
    limit = clamp_limit(limit)
    query = _student_query()
    return {
        'type': 'global',
        'entries': _leaderboard_rows(query, limit),
        'current_user_rank': _rank_of(query, user) if user else None
    }


def get_course_leaderboard(course, limit=LEADERBOARD_DEFAULT_LIMIT, user=None):
    limit = clamp_limit(limit)
    query = _student_query().join(Enrollment, Enrollment.student_id == User.id).filter(
        Enrollment.course_id == course.id,
        Enrollment.status.in_(['ACTIVE', 'COMPLETED'])
    )
    return {
        'type': 'course',
        'course_id': course.id,
        'entries': _leaderboard_rows(query, limit),
        'current_user_rank': _rank_of(query, user) if user else None
    }


# ==================== SUMMARY ====================

def get_student_summary(user):
    progress = get_or_create_user_progress(user)
    recent = XPActivity.query.filter_by(user_id=user.id).order_by(
        XPActivity.created_at.desc(), XPActivity.id.desc()
    ).limit(10).all()
    badges = UserBadge.query.filter_by(user_id=user.id).order_by(UserBadge.unlocked_at).all()

    return {
        'total_xp': progress.total_xp or 0,
        'current_level': progress.current_level or 1,
        'xp_to_next_level': xp_to_next_level(progress.current_level or 1, progress.total_xp or 0),
        'current_streak': progress.current_streak or 0,
        'longest_streak': progress.longest_streak or 0,
        'last_activity_at': progress.last_activity_at.isoformat() if progress.last_activity_at else None,
        'badges': [dict(ub.badge.to_dict(), unlocked_at=ub.unlocked_at.isoformat()) for ub in badges],
        'recent_activities': [a.to_dict() for a in recent]
    }
