"""
Tests for registration, login and token handling
"""
from datetime import datetime, timedelta

import jwt

from auth import generate_token
from conftest import auth_headers
from models import db, User, SystemLog, XPActivity

APPLICATION = {
    'bio': 'Mathematics teacher with ten years of classroom and online tutoring experience.',
    'subjects': ['Mathematics', 'Physics'],
    'qualifications': ['MSc Applied Mathematics'],
    'experience': 10,
    'documents': ['https://files.example.com/diploma.pdf'],
}


class TestRegistration:

    def test_register_student(self, client):
        response = client.post('/auth/register', json={
            'email': 'Ada@Example.com', 'password': 'password123', 'name': 'Ada'
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['access_token']
        assert body['user']['email'] == 'ada@example.com'
        assert body['user']['role'] == 'student'
        assert SystemLog.query.filter_by(action='register').count() == 1

    def test_duplicate_email(self, client, student):
        response = client.post('/auth/register', json={
            'email': student.email, 'password': 'password123', 'name': 'Copy'
        })
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Email already registered'

    def test_short_password(self, client):
        response = client.post('/auth/register', json={
            'email': 'short@example.com', 'password': 'abc', 'name': 'Short'
        })
        assert response.status_code == 400

    def test_register_teacher_creates_pending_application(self, client):
        response = client.post('/auth/register/teacher', json=dict(
            APPLICATION, email='grace@example.com', password='password123', name='Grace'
        ))

        assert response.status_code == 201
        body = response.get_json()
        assert body['user']['role'] == 'pending_teacher'
        assert body['application']['application_status'] == 'PENDING'
        assert body['application']['subjects'] == ['Mathematics', 'Physics']

        user = User.query.filter_by(email='grace@example.com').first()
        assert user.teacher_profile.submitted_at is not None

    def test_register_teacher_requires_subjects(self, client):
        data = dict(APPLICATION, email='nosubject@example.com', password='password123', name='No Subject')
        del data['subjects']
        response = client.post('/auth/register/teacher', json=data)

        assert response.status_code == 400
        assert User.query.filter_by(email='nosubject@example.com').first() is None


class TestLogin:

    def test_login_awards_daily_xp_once(self, client, student):
        first = client.post('/auth/login', json={'email': student.email, 'password': 'password123'})
        second = client.post('/auth/login', json={'email': student.email, 'password': 'password123'})

        assert first.status_code == 200
        assert first.get_json()['daily_login_xp'] == 5
        assert second.get_json()['daily_login_xp'] == 0
        assert XPActivity.query.filter_by(user_id=student.id, reason='DAILY_LOGIN').count() == 1
        assert student.last_login_at is not None

    def test_wrong_password(self, client, student):
        response = client.post('/auth/login', json={'email': student.email, 'password': 'wrong-password'})
        assert response.status_code == 401

    def test_unknown_email(self, client):
        response = client.post('/auth/login', json={'email': 'nobody@example.com', 'password': 'password123'})
        assert response.status_code == 401

    def test_missing_fields(self, client):
        response = client.post('/auth/login', json={'email': 'someone@example.com'})
        assert response.status_code == 400

    def test_deactivated_account(self, client, make_user):
        user = make_user('student', is_active=False)
        response = client.post('/auth/login', json={'email': user.email, 'password': 'password123'})
        assert response.status_code == 403

    def test_admin_login(self, client, app, student):
        response = client.post('/auth/admin-login', json={
            'email': app.config['DEFAULT_ADMIN_EMAIL'],
            'password': app.config['DEFAULT_ADMIN_PASSWORD']
        })
        assert response.status_code == 200
        assert response.get_json()['user']['role'] == 'admin'

        response = client.post('/auth/admin-login', json={'email': student.email, 'password': 'password123'})
        assert response.status_code == 401


class TestTokens:

    def test_me(self, client, student):
        response = client.get('/auth/me', headers=auth_headers(student))
        assert response.status_code == 200
        assert response.get_json()['user']['id'] == student.id

    def test_missing_token(self, client):
        response = client.get('/auth/me')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Token missing'

    def test_expired_token(self, client, app, student):
        token = jwt.encode({
            'user_id': student.id,
            'type': 'access',
            'iat': datetime.utcnow() - timedelta(hours=2),
            'exp': datetime.utcnow() - timedelta(hours=1)
        }, app.config['JWT_SECRET'], algorithm=app.config['JWT_ALGORITHM'])

        response = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Token expired'

    def test_wrong_token_type(self, client, student):
        token = generate_token(student.id, token_type='refresh')
        response = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401

    def test_deactivated_user_token_is_refused(self, client, student):
        headers = auth_headers(student)
        student.is_active = False
        db.session.commit()

        response = client.get('/auth/me', headers=headers)
        assert response.status_code == 401

    def test_role_restricted_route(self, client, teacher, make_course):
        course, lessons = make_course()
        response = client.post(f'/api/courses/{course.id}/enroll', headers=auth_headers(teacher))
        assert response.status_code == 403

    def test_update_profile(self, client, student):
        response = client.post('/auth/update-profile', headers=auth_headers(student),
                               json={'name': 'Renamed', 'bio': 'Learning every day'})
        assert response.status_code == 200
        assert response.get_json()['user']['name'] == 'Renamed'

        response = client.post('/auth/update-profile', headers=auth_headers(student), json={'name': '  '})
        assert response.status_code == 400

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'
