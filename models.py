"""
Database Models for the Learnity tutoring platform
Course → Section → Lesson (→ Quiz), enrollments, watch progress,
gamification, teacher applications and direct messages.
"""
import logging
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

logger = logging.getLogger(__name__)

# Roles
ROLE_STUDENT = 'student'
ROLE_PENDING_TEACHER = 'pending_teacher'
ROLE_TEACHER = 'teacher'
ROLE_REJECTED_TEACHER = 'rejected_teacher'
ROLE_ADMIN = 'admin'
ROLES = [ROLE_STUDENT, ROLE_PENDING_TEACHER, ROLE_TEACHER, ROLE_REJECTED_TEACHER, ROLE_ADMIN]


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    """Platform user (student, teacher or admin)"""
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(20), default=ROLE_STUDENT, index=True)
    is_active = db.Column(db.Boolean, default=True)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Profile
    bio = db.Column(db.Text)
    profile_picture = db.Column(db.String(500))

    # Relationships
    enrollments = db.relationship('Enrollment', backref='student', lazy='dynamic')
    lesson_progress = db.relationship('LessonProgress', backref='student', lazy='dynamic')
    quiz_attempts = db.relationship('QuizAttempt', backref='student', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def is_admin(self):
        return self.role == ROLE_ADMIN

    def is_teacher(self):
        return self.role in [ROLE_TEACHER, ROLE_ADMIN]

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'is_active': self.is_active,
            'bio': self.bio,
            'profile_picture': self.profile_picture,
            'last_login_at': _iso(self.last_login_at),
            'created_at': _iso(self.created_at)
        }

    def __repr__(self):
        return f'<User {self.email}>'


# ==================== TEACHER APPLICATIONS ====================

class TeacherProfile(db.Model):
    """Teacher application and public teaching profile"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)

    bio = db.Column(db.Text)
    subjects = db.Column(db.JSON, default=list)
    qualifications = db.Column(db.JSON, default=list)
    experience = db.Column(db.Integer, default=0)  # years
    documents = db.Column(db.JSON, default=list)  # uploaded document urls
    video_intro_url = db.Column(db.String(500))
    availability = db.Column(db.String(500))
    hourly_rate = db.Column(db.Float)

    application_status = db.Column(db.String(20), default='PENDING', index=True)  # PENDING, APPROVED, REJECTED
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    rejection_reason = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', foreign_keys=[user_id],
                           backref=db.backref('teacher_profile', uselist=False))
    reviewer = db.relationship('User', foreign_keys=[reviewed_by])

    def to_dict(self, include_user=True):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'bio': self.bio,
            'subjects': self.subjects or [],
            'qualifications': self.qualifications or [],
            'experience': self.experience or 0,
            'documents': self.documents or [],
            'video_intro_url': self.video_intro_url,
            'availability': self.availability,
            'hourly_rate': self.hourly_rate,
            'application_status': self.application_status,
            'submitted_at': _iso(self.submitted_at),
            'reviewed_at': _iso(self.reviewed_at),
            'reviewed_by': self.reviewed_by,
            'rejection_reason': self.rejection_reason
        }
        if include_user:
            data['user'] = {
                'id': self.user.id,
                'name': self.user.name,
                'email': self.user.email,
                'role': self.user.role,
                'profile_picture': self.user.profile_picture,
                'created_at': _iso(self.user.created_at)
            }
        return data

    def __repr__(self):
        return f'<TeacherProfile {self.user_id} {self.application_status}>'


# ==================== COURSE STRUCTURE ====================

class Course(db.Model):
    """Course authored by a teacher"""
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    slug = db.Column(db.String(320), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    difficulty = db.Column(db.String(20), default='BEGINNER')  # BEGINNER, INTERMEDIATE, ADVANCED
    teacher_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(20), default='DRAFT', index=True)  # DRAFT, PUBLISHED, ARCHIVED
    require_sequential_progress = db.Column(db.Boolean, default=True)
    enrollment_count = db.Column(db.Integer, default=0)
    published_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher = db.relationship('User', backref=db.backref('courses_taught', lazy='dynamic'))
    sections = db.relationship('Section', backref='course', order_by='Section.order',
                               cascade='all, delete-orphan')
    enrollments = db.relationship('Enrollment', backref='course', lazy='dynamic')

    @property
    def total_duration(self):
        return sum(lesson.duration or 0 for section in self.sections for lesson in section.lessons)

    @property
    def lesson_count(self):
        return sum(len(section.lessons) for section in self.sections)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'description': self.description,
            'difficulty': self.difficulty,
            'status': self.status,
            'require_sequential_progress': self.require_sequential_progress,
            'enrollment_count': self.enrollment_count or 0,
            'lesson_count': self.lesson_count,
            'total_duration': self.total_duration,
            'teacher': {
                'id': self.teacher.id,
                'name': self.teacher.name,
                'profile_picture': self.teacher.profile_picture
            } if self.teacher else None,
            'published_at': _iso(self.published_at),
            'created_at': _iso(self.created_at)
        }

    def __repr__(self):
        return f'<Course {self.slug}>'


class Section(db.Model):
    """Ordered group of lessons within a course"""
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    lessons = db.relationship('Lesson', backref='section', order_by='Lesson.order',
                              cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Section {self.course_id}:{self.order}>'


class Lesson(db.Model):
    """Single lesson (video or text)"""
    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(db.Integer, db.ForeignKey('section.id'), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(20), default='VIDEO')  # VIDEO, TEXT
    video_url = db.Column(db.String(500))
    content = db.Column(db.Text)
    duration = db.Column(db.Integer, default=0)  # seconds
    order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    quiz = db.relationship('Quiz', backref='lesson', uselist=False, cascade='all, delete-orphan')

    @property
    def course(self):
        return self.section.course

    def to_dict(self):
        return {
            'id': self.id,
            'section_id': self.section_id,
            'title': self.title,
            'type': self.type,
            'video_url': self.video_url,
            'duration': self.duration or 0,
            'order': self.order,
            'has_quiz': self.quiz is not None
        }

    def __repr__(self):
        return f'<Lesson {self.id} {self.title}>'


class Quiz(db.Model):
    """Multiple choice quiz attached to a lesson"""
    id = db.Column(db.Integer, primary_key=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lesson.id'), unique=True, nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text)
    passing_score = db.Column(db.Integer, default=70)  # percentage
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    questions = db.relationship('Question', backref='quiz', order_by='Question.order',
                                cascade='all, delete-orphan')
    attempts = db.relationship('QuizAttempt', backref='quiz', lazy='dynamic')

    def to_dict(self):
        """Student view - correct answers are never exposed"""
        return {
            'id': self.id,
            'lesson_id': self.lesson_id,
            'title': self.title,
            'description': self.description,
            'passing_score': self.passing_score,
            'question_count': len(self.questions),
            'questions': [{
                'id': q.id,
                'question': q.question,
                'options': q.options,
                'order': q.order
            } for q in self.questions]
        }

    def __repr__(self):
        return f'<Quiz {self.id}>'


class Question(db.Model):
    """Quiz question with 2-4 options"""
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    question = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False)
    correct_option_index = db.Column(db.Integer, nullable=False)
    explanation = db.Column(db.Text)
    order = db.Column(db.Integer, default=0)


class QuizAttempt(db.Model):
    """Submitted quiz attempt"""
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False)  # 0-100
    passed = db.Column(db.Boolean, default=False)
    answers = db.Column(db.JSON)  # [{question_id, selected_option_index}]
    time_taken = db.Column(db.Integer)  # seconds
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'score': self.score,
            'passed': self.passed,
            'time_taken': self.time_taken,
            'created_at': _iso(self.created_at)
        }


# ==================== ENROLLMENT & PROGRESS ====================

class Enrollment(db.Model):
    """Student enrollment in a course"""
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    status = db.Column(db.String(20), default='ACTIVE')  # ACTIVE, COMPLETED, UNENROLLED
    progress = db.Column(db.Integer, default=0)  # percentage
    enrolled_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_accessed_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_id', name='unique_student_course'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'course_id': self.course_id,
            'course_title': self.course.title if self.course else None,
            'status': self.status,
            'progress': self.progress or 0,
            'enrolled_at': _iso(self.enrolled_at),
            'last_accessed_at': _iso(self.last_accessed_at),
            'completed_at': _iso(self.completed_at)
        }

    def __repr__(self):
        return f'<Enrollment {self.student_id}:{self.course_id} {self.status}>'


class LessonProgress(db.Model):
    """Per-student watch state of one lesson"""
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lesson.id'), nullable=False, index=True)
    watched_seconds = db.Column(db.Integer, default=0)
    last_position = db.Column(db.Integer, default=0)
    position_updated_at = db.Column(db.DateTime)  # client clock of the winning position report
    last_client_id = db.Column(db.String(100))
    completed = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    lesson = db.relationship('Lesson')

    __table_args__ = (
        db.UniqueConstraint('student_id', 'lesson_id', name='unique_student_lesson'),
    )

    def to_dict(self):
        return {
            'lesson_id': self.lesson_id,
            'watched_seconds': self.watched_seconds or 0,
            'last_position': self.last_position or 0,
            'completed': bool(self.completed),
            'completed_at': _iso(self.completed_at),
            'updated_at': _iso(self.updated_at)
        }


class ProgressEvent(db.Model):
    """Offline progress event ids that were already applied"""
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    event_id = db.Column(db.String(100), nullable=False)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lesson.id'))
    applied_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'event_id', name='unique_student_event'),
    )


class Certificate(db.Model):
    """Course completion certificate"""
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    certificate_id = db.Column(db.String(20), unique=True, nullable=False, index=True)
    issued_at = db.Column(db.DateTime, default=datetime.utcnow)

    student = db.relationship('User', backref=db.backref('certificates', lazy='dynamic'))
    course = db.relationship('Course')

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_id', name='unique_student_certificate'),
    )

    def to_dict(self):
        return {
            'certificate_id': self.certificate_id,
            'student_name': self.student.name,
            'course_id': self.course_id,
            'course_title': self.course.title,
            'issued_at': _iso(self.issued_at)
        }


# ==================== GAMIFICATION ====================

class UserProgress(db.Model):
    """XP, level and streak totals for a user"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    total_xp = db.Column(db.Integer, default=0, index=True)
    current_level = db.Column(db.Integer, default=1)
    current_streak = db.Column(db.Integer, default=0)
    longest_streak = db.Column(db.Integer, default=0)
    last_activity_at = db.Column(db.DateTime)
    last_lesson_date = db.Column(db.Date)  # streak day, separate from XP activity
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('xp_progress', uselist=False))


class XPActivity(db.Model):
    """XP ledger; a (user, reason, source_id) triple is awarded at most once"""
    __tablename__ = 'xp_activity'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(50), nullable=False)
    source_id = db.Column(db.String(100))  # NULL sources are never deduplicated
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'reason', 'source_id', name='unique_xp_award'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'amount': self.amount,
            'reason': self.reason,
            'source_id': self.source_id,
            'created_at': _iso(self.created_at)
        }


class BadgeDefinition(db.Model):
    """Achievement badge and its unlock criteria"""
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    icon = db.Column(db.String(50))
    category = db.Column(db.String(30))  # ACHIEVEMENT, STREAK, MASTERY
    rarity = db.Column(db.String(20), default='COMMON')  # COMMON, RARE, EPIC, LEGENDARY
    xp_reward = db.Column(db.Integer, default=0)
    criteria_type = db.Column(db.String(50))
    criteria_value = db.Column(db.Integer)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            'key': self.key,
            'name': self.name,
            'description': self.description,
            'icon': self.icon,
            'category': self.category,
            'rarity': self.rarity,
            'xp_reward': self.xp_reward,
            'criteria': {'type': self.criteria_type, 'value': self.criteria_value}
        }


class UserBadge(db.Model):
    """Badge unlocked by a user"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    badge_id = db.Column(db.Integer, db.ForeignKey('badge_definition.id'), nullable=False)
    unlocked_at = db.Column(db.DateTime, default=datetime.utcnow)

    badge = db.relationship('BadgeDefinition')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'badge_id', name='unique_user_badge'),
    )


class Quest(db.Model):
    """Recurring or one-time quest definition"""
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(30), nullable=False)  # LESSON_COMPLETION, QUIZ_COMPLETION, COURSE_COMPLETION, LOGIN_STREAK
    frequency = db.Column(db.String(20), nullable=False)  # DAILY, WEEKLY, MONTHLY, ONE_TIME
    target_value = db.Column(db.Integer, nullable=False, default=1)
    xp_reward = db.Column(db.Integer, default=0)
    badge_reward = db.Column(db.String(50))  # BadgeDefinition.key
    is_active = db.Column(db.Boolean, default=True)


class UserQuest(db.Model):
    """A user's progress on a quest for one period"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    quest_id = db.Column(db.Integer, db.ForeignKey('quest.id'), nullable=False)
    period_start = db.Column(db.Date, nullable=False)
    current_progress = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), default='IN_PROGRESS')  # IN_PROGRESS, COMPLETED, EXPIRED
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    quest = db.relationship('Quest')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'quest_id', 'period_start', name='unique_user_quest_period'),
    )


# ==================== DIRECT MESSAGES ====================

class DirectMessageChannel(db.Model):
    """One-to-one channel; user1_id is always the smaller id"""
    id = db.Column(db.Integer, primary_key=True)
    user1_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    user2_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    last_message_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user1 = db.relationship('User', foreign_keys=[user1_id])
    user2 = db.relationship('User', foreign_keys=[user2_id])
    messages = db.relationship('DirectMessage', backref='channel', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('user1_id', 'user2_id', name='unique_channel_pair'),
    )

    def has_participant(self, user_id):
        return user_id in (self.user1_id, self.user2_id)

    def other_user(self, user_id):
        return self.user2 if user_id == self.user1_id else self.user1


class DirectMessage(db.Model):
    """Message posted to a direct channel"""
    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey('direct_message_channel.id'), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    read_at = db.Column(db.DateTime)
    is_hidden = db.Column(db.Boolean, default=False)
    hidden_by = db.Column(db.Integer, db.ForeignKey('user.id'))

    sender = db.relationship('User', foreign_keys=[sender_id])

    def to_dict(self):
        return {
            'id': self.id,
            'channel_id': self.channel_id,
            'sender_id': self.sender_id,
            'sender_name': self.sender.name,
            'content': '[message removed by a moderator]' if self.is_hidden else self.content,
            'is_hidden': bool(self.is_hidden),
            'created_at': _iso(self.created_at),
            'read_at': _iso(self.read_at)
        }


# ==================== AUDIT ====================

class SystemLog(db.Model):
    """System activity logs"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    action = db.Column(db.String(100), nullable=False, index=True)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'action': self.action,
            'details': self.details,
            'ip_address': self.ip_address,
            'created_at': _iso(self.created_at)
        }

    def __repr__(self):
        return f'<Log {self.action}>'


# Database initialization functions
BADGE_DEFINITIONS = [
    # Achievement
    {'key': 'first_lesson', 'name': 'First Steps', 'description': 'Complete your first lesson',
     'icon': '🎯', 'category': 'ACHIEVEMENT', 'rarity': 'COMMON', 'xp_reward': 50,
     'criteria_type': 'lesson_count', 'criteria_value': 1},
    {'key': 'first_course', 'name': 'Course Conqueror', 'description': 'Complete your first course',
     'icon': '🏆', 'category': 'ACHIEVEMENT', 'rarity': 'RARE', 'xp_reward': 200,
     'criteria_type': 'course_count', 'criteria_value': 1},
    {'key': 'five_courses', 'name': 'Learning Legend', 'description': 'Complete 5 courses',
     'icon': '⭐', 'category': 'ACHIEVEMENT', 'rarity': 'EPIC', 'xp_reward': 500,
     'criteria_type': 'course_count', 'criteria_value': 5},
    {'key': 'ten_courses', 'name': 'Master Scholar', 'description': 'Complete 10 courses',
     'icon': '👑', 'category': 'ACHIEVEMENT', 'rarity': 'LEGENDARY', 'xp_reward': 1000,
     'criteria_type': 'course_count', 'criteria_value': 10},
    # Streak
    {'key': 'streak_3', 'name': 'Getting Started', 'description': 'Learn 3 days in a row',
     'icon': '🔥', 'category': 'STREAK', 'rarity': 'COMMON', 'xp_reward': 100,
     'criteria_type': 'streak', 'criteria_value': 3},
    {'key': 'streak_7', 'name': 'Week Warrior', 'description': 'Learn 7 days in a row',
     'icon': '🔥', 'category': 'STREAK', 'rarity': 'RARE', 'xp_reward': 250,
     'criteria_type': 'streak', 'criteria_value': 7},
    {'key': 'streak_30', 'name': 'Monthly Master', 'description': 'Learn 30 days in a row',
     'icon': '🔥', 'category': 'STREAK', 'rarity': 'EPIC', 'xp_reward': 1000,
     'criteria_type': 'streak', 'criteria_value': 30},
    {'key': 'streak_100', 'name': 'Century Champion', 'description': 'Learn 100 days in a row',
     'icon': '💎', 'category': 'STREAK', 'rarity': 'LEGENDARY', 'xp_reward': 5000,
     'criteria_type': 'streak', 'criteria_value': 100},
    # Mastery
    {'key': 'quiz_ace', 'name': 'Quiz Ace', 'description': 'Pass 10 quizzes with a perfect score',
     'icon': '🎓', 'category': 'MASTERY', 'rarity': 'RARE', 'xp_reward': 300,
     'criteria_type': 'perfect_quizzes', 'criteria_value': 10},
    {'key': 'quiz_master', 'name': 'Quiz Master', 'description': 'Pass 50 different quizzes',
     'icon': '🧠', 'category': 'MASTERY', 'rarity': 'EPIC', 'xp_reward': 750,
     'criteria_type': 'quiz_pass_count', 'criteria_value': 50},
    {'key': 'speed_learner', 'name': 'Speed Learner', 'description': 'Complete 5 lessons in one day',
     'icon': '⚡', 'category': 'MASTERY', 'rarity': 'RARE', 'xp_reward': 200,
     'criteria_type': 'lessons_per_day', 'criteria_value': 5},
]

QUEST_DEFINITIONS = [
    {'key': 'daily_lesson', 'title': 'Daily Learner', 'description': 'Complete 1 lesson today',
     'type': 'LESSON_COMPLETION', 'frequency': 'DAILY', 'target_value': 1, 'xp_reward': 50},
    {'key': 'daily_quiz', 'title': 'Quiz of the Day', 'description': 'Pass 1 quiz today',
     'type': 'QUIZ_COMPLETION', 'frequency': 'DAILY', 'target_value': 1, 'xp_reward': 75},
    {'key': 'weekly_5_lessons', 'title': 'Weekly Warrior', 'description': 'Complete 5 lessons this week',
     'type': 'LESSON_COMPLETION', 'frequency': 'WEEKLY', 'target_value': 5, 'xp_reward': 300},
    {'key': 'weekly_3_quizzes', 'title': 'Quiz Champion', 'description': 'Pass 3 quizzes this week',
     'type': 'QUIZ_COMPLETION', 'frequency': 'WEEKLY', 'target_value': 3, 'xp_reward': 250},
    {'key': 'weekly_streak', 'title': 'Consistency King', 'description': 'Maintain a 7-day learning streak',
     'type': 'LOGIN_STREAK', 'frequency': 'WEEKLY', 'target_value': 7, 'xp_reward': 500,
     'badge_reward': 'streak_7'},
    {'key': 'monthly_course', 'title': 'Course Completer', 'description': 'Complete 1 full course this month',
     'type': 'COURSE_COMPLETION', 'frequency': 'MONTHLY', 'target_value': 1, 'xp_reward': 1000},
    {'key': 'onboarding_first_lesson', 'title': 'Welcome to Learnity!', 'description': 'Complete your first lesson',
     'type': 'LESSON_COMPLETION', 'frequency': 'ONE_TIME', 'target_value': 1, 'xp_reward': 100,
     'badge_reward': 'first_lesson'},
    {'key': 'onboarding_first_quiz', 'title': 'Test Your Knowledge', 'description': 'Pass your first quiz',
     'type': 'QUIZ_COMPLETION', 'frequency': 'ONE_TIME', 'target_value': 1, 'xp_reward': 100},
]


def init_badges(db):
    """Create or update badge definitions"""
    for data in BADGE_DEFINITIONS:
        badge = BadgeDefinition.query.filter_by(key=data['key']).first()
        if not badge:
            badge = BadgeDefinition(key=data['key'])
            db.session.add(badge)
        for field, value in data.items():
            setattr(badge, field, value)
    db.session.commit()
    logger.info(f"Badge definitions ready: {len(BADGE_DEFINITIONS)}")


def init_quests(db):
    """Create or update quest definitions"""
    for data in QUEST_DEFINITIONS:
        quest = Quest.query.filter_by(key=data['key']).first()
        if not quest:
            quest = Quest(key=data['key'])
            db.session.add(quest)
        quest.badge_reward = None
        for field, value in data.items():
            setattr(quest, field, value)
    db.session.commit()
    logger.info(f"Quest definitions ready: {len(QUEST_DEFINITIONS)}")


def create_default_admin(db, email, password):
    """Create default admin user"""
    admin = User.query.filter_by(email=email).first()
    if not admin:
        admin = User(
            email=email,
            name='System Administrator',
            role=ROLE_ADMIN
        )
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        logger.info(f"Default admin created: {email}")
    elif not admin.password_hash:
        admin.set_password(password)
        db.session.commit()
        logger.info(f"Admin password reset for {email}")
    return admin
