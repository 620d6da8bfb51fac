"""
Course catalog services: authoring helpers, lesson ordering and enrollment.
Management happens through these functions (CLI import and tests);
the HTTP surface for students is read-only.
"""
import re
import logging
from datetime import datetime
from models import db, Course, Section, Lesson, Quiz, Question, Enrollment
from errors import CatalogError, EnrollmentError

logger = logging.getLogger(__name__)

DIFFICULTIES = ['BEGINNER', 'INTERMEDIATE', 'ADVANCED']
LESSON_TYPES = ['VIDEO', 'TEXT']
MIN_OPTIONS = 2
MAX_OPTIONS = 4


def slugify(text):
    slug = re.sub(r'[^a-z0-9]+', '-', (text or '').lower()).strip('-')
    return slug or 'course'


def _unique_slug(title):
    base = slugify(title)
    slug = base
    suffix = 2
    while Course.query.filter_by(slug=slug).first():
        slug = f'{base}-{suffix}'
        suffix += 1
    return slug


# ==================== AUTHORING ====================

def create_course(teacher, title, description=None, difficulty='BEGINNER',
                  require_sequential_progress=True):
    if not teacher.is_teacher():
        raise CatalogError('Only approved teachers can create courses', 'NOT_A_TEACHER', 403)
    if not title or not title.strip():
        raise CatalogError('Course title is required', 'INVALID_COURSE')
    if difficulty not in DIFFICULTIES:
        raise CatalogError(f'Difficulty must be one of {", ".join(DIFFICULTIES)}', 'INVALID_COURSE')

    course = Course(
        title=title.strip(),
        slug=_unique_slug(title),
        description=description,
        difficulty=difficulty,
        teacher_id=teacher.id,
        status='DRAFT',
        require_sequential_progress=require_sequential_progress,
        enrollment_count=0
    )
    db.session.add(course)
    db.session.flush()
    return course


def add_section(course, title, order=None):
    if not title or not title.strip():
        raise CatalogError('Section title is required', 'INVALID_SECTION')
    section = Section(title=title.strip(), order=len(course.sections) if order is None else order)
    course.sections.append(section)
    db.session.flush()
    return section


def add_lesson(section, title, duration=0, type='VIDEO', video_url=None, content=None, order=None):
    if not title or not title.strip():
        raise CatalogError('Lesson title is required', 'INVALID_LESSON')
    if type not in LESSON_TYPES:
        raise CatalogError(f'Lesson type must be one of {", ".join(LESSON_TYPES)}', 'INVALID_LESSON')
    if not isinstance(duration, int) or duration < 0:
        raise CatalogError('Lesson duration must be a non-negative number of seconds', 'INVALID_LESSON')

    lesson = Lesson(
        title=title.strip(),
        type=type,
        duration=duration,
        video_url=video_url,
        content=content,
        order=len(section.lessons) if order is None else order
    )
    section.lessons.append(lesson)
    db.session.flush()
    return lesson


def _validate_question(index, data):
    text = (data.get('question') or '').strip()
    options = data.get('options')
    correct = data.get('correct_option_index')

    if not text:
        return f'Question {index + 1}: text is required'
    if not isinstance(options, list) or not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
        return f'Question {index + 1}: between {MIN_OPTIONS} and {MAX_OPTIONS} options required'
    if any(not isinstance(option, str) or not option.strip() for option in options):
        return f'Question {index + 1}: options must be non-empty text'
    if not isinstance(correct, int) or not 0 <= correct < len(options):
        return f'Question {index + 1}: correct_option_index out of range'
    return None


def attach_quiz(lesson, title, questions, passing_score=70, description=None):
    if lesson.quiz is not None:
        raise CatalogError('Lesson already has a quiz', 'QUIZ_EXISTS', 409)
    if not title or not title.strip():
        raise CatalogError('Quiz title is required', 'INVALID_QUIZ')
    if not isinstance(passing_score, int) or not 0 <= passing_score <= 100:
        raise CatalogError('Passing score must be between 0 and 100', 'INVALID_QUIZ')
    if not questions:
        raise CatalogError('A quiz needs at least one question', 'INVALID_QUIZ')

    for i, data in enumerate(questions):
        error = _validate_question(i, data)
        if error:
            raise CatalogError(error, 'INVALID_QUESTION')

    quiz = Quiz(title=title.strip(), description=description, passing_score=passing_score)
    lesson.quiz = quiz
    for i, data in enumerate(questions):
        quiz.questions.append(Question(
            question=data['question'].strip(),
            options=[option.strip() for option in data['options']],
            correct_option_index=data['correct_option_index'],
            explanation=data.get('explanation'),
            order=data.get('order', i)
        ))
    db.session.flush()
    return quiz


def publish_course(course, now=None):
    if course.status == 'PUBLISHED':
        return course
    if course.lesson_count == 0:
        raise CatalogError('A course needs at least one lesson before publishing', 'EMPTY_COURSE')
    course.status = 'PUBLISHED'
    course.published_at = now or datetime.utcnow()
    db.session.flush()
    logger.info(f"Course published: {course.slug}")
    return course


def import_course_outline(data, teacher):
    """
    Build a course from a nested outline:
    {title, description, difficulty, require_sequential_progress, publish,
     sections: [{title, lessons: [{title, type, duration, video_url, content,
                                   quiz: {title, passing_score, questions: [...]}}]}]}
    """
    if not isinstance(data, dict):
        raise CatalogError('Course outline must be an object', 'INVALID_OUTLINE')

    course = create_course(
        teacher,
        data.get('title'),
        description=data.get('description'),
        difficulty=data.get('difficulty', 'BEGINNER'),
        require_sequential_progress=data.get('require_sequential_progress', True)
    )
    for section_data in data.get('sections', []):
        section = add_section(course, section_data.get('title'))
        for lesson_data in section_data.get('lessons', []):
            lesson = add_lesson(
                section,
                lesson_data.get('title'),
                duration=lesson_data.get('duration', 0),
                type=lesson_data.get('type', 'VIDEO'),
                video_url=lesson_data.get('video_url'),
                content=lesson_data.get('content')
            )
            quiz_data = lesson_data.get('quiz')
            if quiz_data:
                attach_quiz(
                    lesson,
                    quiz_data.get('title'),
                    quiz_data.get('questions', []),
                    passing_score=quiz_data.get('passing_score', 70),
                    description=quiz_data.get('description')
                )

    if data.get('publish'):
        publish_course(course)
    return course


# ==================== ORDERING ====================

def ordered_sections(course):
    return sorted(course.sections, key=lambda s: (s.order, s.id))


def ordered_lessons(course):
    """Every lesson of a course flattened in (section order, lesson order)"""
    lessons = []
    for section in ordered_sections(course):
        lessons.extend(sorted(section.lessons, key=lambda l: (l.order, l.id)))
    return lessons


def course_quizzes(course):
    return [lesson.quiz for lesson in ordered_lessons(course) if lesson.quiz is not None]


def course_outline(course):
    """Public outline; quiz answers are not part of it"""
    data = course.to_dict()
    data['sections'] = [{
        'id': section.id,
        'title': section.title,
        'order': section.order,
        'duration': sum(lesson.duration or 0 for lesson in section.lessons),
        'lessons': [lesson.to_dict() for lesson in sorted(section.lessons, key=lambda l: (l.order, l.id))]
    } for section in ordered_sections(course)]
    return data


# ==================== ENROLLMENT ====================

def get_enrollment(student, course):
    return Enrollment.query.filter_by(student_id=student.id, course_id=course.id).first()


def get_active_enrollment(student, course):
    return Enrollment.query.filter_by(
        student_id=student.id, course_id=course.id, status='ACTIVE'
    ).first()


def enroll_student(student, course, now=None):
    """Enroll a student, reactivating a previous unenrollment"""
    now = now or datetime.utcnow()
    if course.status != 'PUBLISHED':
        raise EnrollmentError('Course is not available for enrollment', 'COURSE_NOT_PUBLISHED')

    enrollment = get_enrollment(student, course)
    if enrollment:
        if enrollment.status != 'UNENROLLED':
            raise EnrollmentError('Already enrolled in this course', 'ALREADY_ENROLLED', 409)
        enrollment.status = 'ACTIVE'
        enrollment.enrolled_at = now
        enrollment.last_accessed_at = now
        logger.info(f"Enrollment reactivated: student={student.id} course={course.id}")
    else:
        enrollment = Enrollment(
            student_id=student.id,
            course_id=course.id,
            status='ACTIVE',
            progress=0,
            enrolled_at=now,
            last_accessed_at=now
        )
        db.session.add(enrollment)
        logger.info(f"New enrollment: student={student.id} course={course.id}")

    course.enrollment_count = (course.enrollment_count or 0) + 1
    db.session.flush()
    return enrollment


def unenroll_student(student, course):
    enrollment = get_active_enrollment(student, course)
    if not enrollment:
        raise EnrollmentError('Not enrolled in this course', 'NOT_ENROLLED')

    enrollment.status = 'UNENROLLED'
    course.enrollment_count = max(0, (course.enrollment_count or 0) - 1)
    db.session.flush()
    logger.info(f"Unenrolled: student={student.id} course={course.id}")
    return enrollment
