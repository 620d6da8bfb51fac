"""
Pytest configuration and fixtures for Learnity tests
"""

import sys
import itertools
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app import create_app, init_database  # noqa: E402
from models import db, User  # noqa: E402
from auth import generate_token  # noqa: E402
import catalog  # noqa: E402


QUIZ_QUESTIONS = [
    {
        'question': 'Which keyword defines a function?',
        'options': ['func', 'def', 'lambda', 'fn'],
        'correct_option_index': 1,
        'explanation': 'Functions are defined with def.'
    },
    {
        'question': 'Lists are mutable.',
        'options': ['True', 'False'],
        'correct_option_index': 0,
        'explanation': 'Lists can be changed in place.'
    },
]


@pytest.fixture
def app():
    """Application bound to a fresh in-memory database"""
    app = create_app('testing')
    with app.app_context():
        init_database(app)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Factory creating users with a known password"""
    counter = itertools.count(1)

    def _make(role='student', name=None, email=None, password='password123', is_active=True):
        n = next(counter)
        user = User(
            email=email or f'{role}{n}@example.com',
            name=name or f'{role.replace("_", " ").title()} {n}',
            role=role,
            is_active=is_active
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


def auth_headers(user):
    return {'Authorization': f'Bearer {generate_token(user.id)}'}


@pytest.fixture
def student(make_user):
    return make_user('student')


@pytest.fixture
def teacher(make_user):
    return make_user('teacher')


@pytest.fixture
def admin(app):
    return User.query.filter_by(email=app.config['DEFAULT_ADMIN_EMAIL']).first()


@pytest.fixture
def make_course(teacher):
    """
    Build a course from lesson durations per section, e.g. ((60, 120), (90,)).
    Returns (course, lessons in course order).
    """
    def _make(sections=((60, 120), (90,)), publish=True, sequential=True, quiz_lessons=(),
              title='Python Basics'):
        course = catalog.create_course(teacher, title, description='Learn Python',
                                       require_sequential_progress=sequential)
        lessons = []
        for s, durations in enumerate(sections):
            section = catalog.add_section(course, f'Section {s + 1}')
            for n, duration in enumerate(durations):
                lessons.append(catalog.add_lesson(section, f'Lesson {s + 1}.{n + 1}', duration=duration))
        for index in quiz_lessons:
            catalog.attach_quiz(lessons[index], f'Checkpoint {index + 1}', QUIZ_QUESTIONS)
        if publish:
            catalog.publish_course(course)
        db.session.commit()
        return course, lessons

    return _make


@pytest.fixture
def enrolled(student, make_course):
    """Student enrolled in a published three-lesson course"""
    course, lessons = make_course()
    catalog.enroll_student(student, course)
    db.session.commit()
    return course, lessons
