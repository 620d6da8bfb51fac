"""
Tests for the teacher application workflow and the admin API
"""
from datetime import datetime, timedelta

import pytest

import teachers
from conftest import auth_headers
from errors import ApplicationError
from models import db, SystemLog, TeacherProfile
from notifications import email_service

APPLICATION = {
    'bio': 'Mathematics teacher with ten years of classroom and online tutoring experience.',
    'subjects': ['Mathematics'],
    'qualifications': ['MSc Applied Mathematics'],
    'experience': 10,
    'documents': ['https://files.example.com/diploma.pdf'],
}


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture decision emails instead of sending them"""
    sent = []
    monkeypatch.setattr(email_service, 'send_application_approved',
                        lambda user: sent.append(('approved', user.email)) or True)
    monkeypatch.setattr(email_service, 'send_application_rejected',
                        lambda user, reason, reapply_date=None:
                        sent.append(('rejected', user.email, reason, reapply_date)) or True)
    return sent


@pytest.fixture
def make_applicant(make_user):
    def _make():
        user = make_user('student')
        fields, error = teachers.validate_application(APPLICATION)
        assert error is None
        profile = teachers.apply_application_fields(user, fields)
        db.session.commit()
        return profile
    return _make


@pytest.fixture
def application(make_applicant):
    return make_applicant()


class TestApplicationService:

    def test_validation_errors(self):
        assert teachers.validate_application({})[1] == 'bio is required'
        data = dict(APPLICATION, subjects='Maths')
        assert teachers.validate_application(data)[1] == 'subjects must be a list of names'
        data = dict(APPLICATION, experience=-1)
        assert teachers.validate_application(data)[0] is None

    def test_approve(self, application, admin):
        teachers.review_application(application, admin, 'APPROVED')

        assert application.application_status == 'APPROVED'
        assert application.user.role == 'teacher'
        assert application.reviewed_by == admin.id
        assert application.user.is_teacher()

    def test_reject_uses_default_reason(self, application, admin):
        teachers.review_application(application, admin, 'REJECTED', '   ')

        assert application.rejection_reason == teachers.DEFAULT_REJECTION_REASON
        assert application.user.role == 'rejected_teacher'

    def test_only_pending_can_be_reviewed(self, application, admin):
        teachers.review_application(application, admin, 'APPROVED')
        with pytest.raises(ApplicationError) as exc:
            teachers.review_application(application, admin, 'REJECTED')
        assert exc.value.code == 'INVALID_TRANSITION'
        assert exc.value.status_code == 409

    def test_invalid_decision(self, application, admin):
        with pytest.raises(ApplicationError) as exc:
            teachers.review_application(application, admin, 'MAYBE')
        assert exc.value.code == 'INVALID_DECISION'

    def test_reapply_after_cooldown(self, app, application, admin):
        reviewed = datetime(2026, 3, 1, 10, 0, 0)
        teachers.review_application(application, admin, 'REJECTED', 'Missing documents', now=reviewed)
        fields, _ = teachers.validate_application(APPLICATION)

        with pytest.raises(ApplicationError) as exc:
            teachers.resubmit_application(application, fields, now=reviewed + timedelta(days=29))
        assert exc.value.code == 'REAPPLY_TOO_EARLY'

        days = app.config['TEACHER_REAPPLY_DAYS']
        assert teachers.reapply_date(application) == reviewed + timedelta(days=days)
        teachers.resubmit_application(application, fields, now=reviewed + timedelta(days=days))

        assert application.application_status == 'PENDING'
        assert application.rejection_reason is None
        assert application.user.role == 'pending_teacher'

    def test_profile_completion(self, application):
        completion = teachers.profile_completion(application)

        assert len(completion['items']) == 8
        assert completion['improvement_areas'] == ['Introduction video', 'Availability', 'Profile picture']

    def test_estimated_review_time(self, make_applicant):
        make_applicant()
        assert teachers.estimated_review_time() == '1-3 business days'


class TestApplicationRoutes:

    def test_student_applies(self, client, student):
        response = client.post('/api/teacher/application', headers=auth_headers(student), json=APPLICATION)

        assert response.status_code == 201
        body = response.get_json()
        assert body['status'] == 'PENDING'
        assert body['estimated_review_time'] == '1-3 business days'
        assert student.role == 'pending_teacher'

        again = client.post('/api/teacher/application', headers=auth_headers(student), json=APPLICATION)
        assert again.status_code == 403

    def test_status_without_application(self, client, student):
        response = client.get('/api/teacher/application', headers=auth_headers(student))
        assert response.status_code == 404

    def test_pending_applicant_edits(self, client, application):
        response = client.put('/api/teacher/application', headers=auth_headers(application.user),
                              json={'availability': 'Weekday evenings', 'hourly_rate': 25})

        assert response.status_code == 200
        body = response.get_json()
        assert body['application']['availability'] == 'Weekday evenings'
        assert body['application']['subjects'] == ['Mathematics']
        assert body['status'] == 'PENDING'

    def test_rejected_applicant_waits_for_cooldown(self, client, application, admin):
        teachers.review_application(application, admin, 'REJECTED')
        db.session.commit()
        headers = auth_headers(application.user)

        status = client.get('/api/teacher/application', headers=headers).get_json()
        assert not status['can_reapply']
        assert status['reapply_date'] is not None

        response = client.put('/api/teacher/application', headers=headers, json={})
        assert response.status_code == 409
        assert response.get_json()['code'] == 'REAPPLY_TOO_EARLY'

        application.reviewed_at = datetime.utcnow() - timedelta(days=31)
        db.session.commit()

        response = client.put('/api/teacher/application', headers=headers, json={'experience': 11})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'PENDING'
        assert application.user.role == 'pending_teacher'

    def test_approved_teacher_updates_profile(self, client, application, admin):
        teachers.review_application(application, admin, 'APPROVED')
        db.session.commit()

        response = client.put('/api/teacher/application', headers=auth_headers(application.user),
                              json={'hourly_rate': 40})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'APPROVED'
        assert application.hourly_rate == 40


class TestAdminReview:

    def test_requires_admin(self, client, student):
        response = client.get('/api/admin/teachers/applications', headers=auth_headers(student))
        assert response.status_code == 403

    def test_list_applications(self, client, admin, make_applicant):
        make_applicant()
        approved = make_applicant()
        teachers.review_application(approved, admin, 'APPROVED')
        db.session.commit()

        response = client.get('/api/admin/teachers/applications?status=pending', headers=auth_headers(admin))
        body = response.get_json()
        assert len(body['applications']) == 1
        assert body['stats'] == {'total': 2, 'pending': 1, 'approved': 1, 'rejected': 0}

    def test_application_detail(self, client, admin, application):
        response = client.get(f'/api/admin/teachers/applications/{application.id}', headers=auth_headers(admin))
        body = response.get_json()['application']
        assert body['user']['email'] == application.user.email
        assert body['reviewer'] is None
        assert len(body['profile_completion']['items']) == 8

    def test_approve_sends_email(self, client, admin, application, sent_emails):
        response = client.post(f'/api/admin/teachers/applications/{application.id}/review',
                               headers=auth_headers(admin), json={'decision': 'APPROVED'})

        assert response.status_code == 200
        assert response.get_json()['application']['application_status'] == 'APPROVED'
        assert application.user.role == 'teacher'
        assert sent_emails == [('approved', application.user.email)]
        assert SystemLog.query.filter_by(action='teacher_application_reviewed').count() == 1

    def test_reject_sends_reason_and_reapply_date(self, client, admin, application, sent_emails):
        response = client.post(f'/api/admin/teachers/applications/{application.id}/review',
                               headers=auth_headers(admin), json={'decision': 'REJECTED'})

        assert response.status_code == 200
        kind, email, reason, reapply = sent_emails[0]
        assert kind == 'rejected'
        assert reason == teachers.DEFAULT_REJECTION_REASON
        assert reapply == application.reviewed_at + timedelta(days=30)

    def test_email_failure_does_not_undo_review(self, client, admin, application, monkeypatch):
        def broken(user):
            raise RuntimeError('SMTP down')
        monkeypatch.setattr(email_service, 'send_application_approved', broken)

        response = client.post(f'/api/admin/teachers/applications/{application.id}/review',
                               headers=auth_headers(admin), json={'decision': 'APPROVED'})

        assert response.status_code == 200
        assert db.session.get(TeacherProfile, application.id).application_status == 'APPROVED'

    def test_review_twice_conflicts(self, client, admin, application, sent_emails):
        url = f'/api/admin/teachers/applications/{application.id}/review'
        client.post(url, headers=auth_headers(admin), json={'decision': 'APPROVED'})
        response = client.post(url, headers=auth_headers(admin), json={'decision': 'REJECTED'})

        assert response.status_code == 409
        assert response.get_json()['code'] == 'INVALID_TRANSITION'

    def test_review_requires_decision(self, client, admin, application):
        url = f'/api/admin/teachers/applications/{application.id}/review'
        assert client.post(url, headers=auth_headers(admin), json={}).status_code == 400
        response = client.post(url, headers=auth_headers(admin), json={'decision': 'LATER'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_DECISION'

    def test_batch_review(self, client, admin, make_applicant, sent_emails):
        first = make_applicant()
        second = make_applicant()
        done = make_applicant()
        teachers.review_application(done, admin, 'APPROVED')
        db.session.commit()

        response = client.post('/api/admin/teachers/applications/batch', headers=auth_headers(admin), json={
            'application_ids': [first.id, second.id, done.id, 9999],
            'decision': 'REJECTED',
            'rejection_reason': 'Subject already covered'
        })

        body = response.get_json()
        assert response.status_code == 200
        assert body['summary'] == {'total': 4, 'successful': 2, 'failed': 2}
        assert [r['success'] for r in body['results']] == [True, True, False, False]
        assert first.rejection_reason == 'Subject already covered'
        assert len(sent_emails) == 2

    def test_batch_limits(self, client, admin):
        url = '/api/admin/teachers/applications/batch'
        response = client.post(url, headers=auth_headers(admin),
                               json={'application_ids': list(range(1, 52)), 'decision': 'APPROVED'})
        assert response.status_code == 400
        response = client.post(url, headers=auth_headers(admin), json={'application_ids': [1], 'decision': 'NO'})
        assert response.status_code == 400


class TestAdminUsers:

    def test_cannot_deactivate_self(self, client, admin):
        response = client.post(f'/api/admin/users/{admin.id}/status', headers=auth_headers(admin),
                               json={'action': 'deactivate'})
        assert response.status_code == 400

    def test_cannot_deactivate_admin(self, client, admin, make_user):
        other = make_user('admin')
        response = client.post(f'/api/admin/users/{other.id}/status', headers=auth_headers(admin),
                               json={'action': 'deactivate'})
        assert response.status_code == 403

    def test_deactivated_student_cannot_log_in(self, client, admin, student):
        response = client.post(f'/api/admin/users/{student.id}/status', headers=auth_headers(admin),
                               json={'action': 'deactivate'})
        assert response.status_code == 200
        assert not student.is_active

        login = client.post('/auth/login', json={'email': student.email, 'password': 'password123'})
        assert login.status_code == 403

        client.post(f'/api/admin/users/{student.id}/status', headers=auth_headers(admin),
                    json={'action': 'activate'})
        login = client.post('/auth/login', json={'email': student.email, 'password': 'password123'})
        assert login.status_code == 200

    def test_list_users_filters(self, client, admin, student, teacher):
        response = client.get('/api/admin/users?role=teacher', headers=auth_headers(admin))
        assert [u['id'] for u in response.get_json()['users']] == [teacher.id]

        response = client.get(f'/api/admin/users?search={student.email}', headers=auth_headers(admin))
        assert [u['id'] for u in response.get_json()['users']] == [student.id]

    def test_stats(self, client, admin, student, enrolled):
        response = client.get('/api/admin/stats', headers=auth_headers(admin))
        stats = response.get_json()['stats']

        assert stats['users']['by_role']['student'] == 1
        assert stats['users']['by_role']['admin'] == 1
        assert stats['courses']['by_status'] == {'PUBLISHED': 1}
        assert stats['enrollments']['total'] == 1
        assert stats['messages_sent'] == 0

    def test_audit_logs(self, client, admin, student):
        client.post('/auth/login', json={'email': student.email, 'password': 'password123'})

        response = client.get('/api/admin/audit-logs?action=login', headers=auth_headers(admin))
        logs = response.get_json()['logs']
        assert len(logs) == 1
        assert logs[0]['user_id'] == student.id


class TestDecisionEmails:

    @pytest.fixture
    def outbox(self, monkeypatch):
        sent = []
        monkeypatch.setattr(email_service, 'send',
                            lambda to_email, subject, html_body, text_body=None:
                            sent.append((to_email, html_body, text_body)) or True)
        return sent

    def test_rejection_html_is_escaped(self, make_user, outbox):
        user = make_user('rejected_teacher', name='<b>Mallory</b>')

        email_service.send_application_rejected(user, 'Links to <script>alert(1)</script> are not allowed')

        to_email, html_body, text_body = outbox[0]
        assert to_email == user.email
        assert '&lt;b&gt;Mallory&lt;/b&gt;' in html_body
        assert '&lt;script&gt;alert(1)&lt;/script&gt;' in html_body
        assert '<script>' not in html_body
        assert 'Reason: Links to <script>alert(1)</script> are not allowed' in text_body

    def test_approval_html_is_escaped(self, make_user, outbox):
        user = make_user('teacher', name='Ann & "Bo"')

        email_service.send_application_approved(user)

        assert 'Congratulations Ann &amp; &#34;Bo&#34;!' in outbox[0][1]
