"""
Tests for registration, login and access control.
"""
import pytest

from league import services
from league.models import Settings


class TestUserCreation:
    """Tests for create_user."""

    def test_create_user_success(self, app_env, store):
        ok, msg = app_env.create_user('Coach@Example.com', 'pass1234')
        assert ok is True
        assert 'created' in msg.lower()
        user = services.find_user_by_email(store, 'coach@example.com')
        assert user.role == 'user'
        assert user.password_hash != 'pass1234'

    def test_invalid_email(self, app_env):
        ok, _ = app_env.create_user('not-an-email', 'pass1234')
        assert ok is False

    def test_short_password(self, app_env):
        ok, _ = app_env.create_user('a@example.com', 'abc')
        assert ok is False

    def test_duplicate_email(self, app_env):
        app_env.create_user('a@example.com', 'pass1234')
        ok, msg = app_env.create_user('A@example.com', 'otherpass')
        assert ok is False
        assert 'exists' in msg.lower()

    def test_signup_disabled(self, app_env, store):
        services.update_settings(store, Settings(signup_enabled=False))
        ok, msg = app_env.create_user('a@example.com', 'pass1234')
        assert ok is False
        assert 'disabled' in msg.lower()


class TestAuthentication:
    """Tests for authenticate_user."""

    def test_valid_credentials(self, app_env, make_user):
        user_id = make_user('a@example.com', password='pass1234')
        assert app_env.authenticate_user('a@example.com', 'pass1234').id == user_id

    def test_wrong_password(self, app_env, make_user):
        make_user('a@example.com', password='pass1234')
        assert app_env.authenticate_user('a@example.com', 'nope') is None

    def test_inactive_user(self, app_env, make_user):
        make_user('a@example.com', password='pass1234', active=False)
        assert app_env.authenticate_user('a@example.com', 'pass1234') is None

    def test_unknown_user(self, app_env):
        assert app_env.authenticate_user('ghost@example.com', 'pass1234') is None


class TestLoginRoutes:
    """Tests for the login, register and logout pages."""

    def test_login_page(self, client):
        assert client.get('/login').status_code == 200

    def test_login_sets_session(self, client, make_user):
        user_id = make_user('a@example.com', password='pass1234')
        response = client.post('/login', data={'email': 'a@example.com', 'password': 'pass1234'})
        assert response.status_code == 302
        with client.session_transaction() as sess:
            assert sess['user_id'] == user_id

    def test_login_redirects_to_next(self, client, make_user):
        make_user('a@example.com', password='pass1234')
        response = client.post('/login?next=/standings',
                               data={'email': 'a@example.com', 'password': 'pass1234'})
        assert response.headers['Location'].endswith('/standings')

    def test_login_ignores_external_next(self, client, make_user):
        make_user('a@example.com', password='pass1234')
        response = client.post('/login?next=//evil.example.com',
                               data={'email': 'a@example.com', 'password': 'pass1234'})
        assert 'evil' not in response.headers['Location']

    def test_bad_login(self, client):
        response = client.post('/login', data={'email': 'a@example.com', 'password': 'x'})
        assert response.status_code == 200
        assert b'Invalid email or password' in response.data

    def test_register_logs_in(self, client, store):
        response = client.post('/register', data={'email': 'new@example.com', 'password': 'pass1234',
                                                  'confirm_password': 'pass1234'})
        assert response.status_code == 302
        with client.session_transaction() as sess:
            assert sess['user_id'] == services.find_user_by_email(store, 'new@example.com').id

    def test_register_password_mismatch(self, client, store):
        response = client.post('/register', data={'email': 'new@example.com', 'password': 'pass1234',
                                                  'confirm_password': 'pass12345'})
        assert b'Passwords do not match' in response.data
        assert services.find_user_by_email(store, 'new@example.com') is None

    def test_logout(self, user_client):
        user_client.get('/logout')
        with user_client.session_transaction() as sess:
            assert 'user_id' not in sess

    def test_deactivated_user_loses_session(self, user_client, app_env, store):
        services.update_user_active(store, user_client.user_id, False)
        app_env.cache.clear()
        user_client.get('/')
        with user_client.session_transaction() as sess:
            assert 'user_id' not in sess


class TestAccessControl:
    """Admin pages require an administrator."""

    @pytest.mark.parametrize('path', ['/admin', '/admin/teams', '/admin/matches', '/admin/playoffs',
                                      '/admin/standings', '/admin/settings', '/admin/users',
                                      '/admin/insights', '/admin/league-goals'])
    def test_anonymous_redirected_to_login(self, client, path):
        response = client.get(path)
        assert response.status_code == 302
        assert '/login' in response.headers['Location']

    def test_regular_user_turned_away(self, user_client):
        response = user_client.get('/admin')
        assert response.status_code == 302
        assert '/login' not in response.headers['Location']

    def test_admin_allowed(self, admin_client):
        assert admin_client.get('/admin').status_code == 200

    def test_setup_admin_requires_login(self, client):
        assert client.get('/setup-admin').status_code == 302


class TestSetupAdmin:
    """Tests for the self-service promotion page."""

    def test_correct_code_promotes(self, user_client, store):
        response = user_client.post('/setup-admin', data={'secret_code': 'admin123'})
        assert response.status_code == 302
        assert services.get_user(store, user_client.user_id).is_admin
        assert user_client.get('/admin').status_code == 200

    def test_wrong_code(self, user_client, store):
        response = user_client.post('/setup-admin', data={'secret_code': 'guess'})
        assert response.status_code == 200
        assert b'Invalid administrator secret code' in response.data
        assert not services.get_user(store, user_client.user_id).is_admin

    def test_limit_reached_message(self, user_client, store, make_user):
        services.update_settings(store, Settings(max_admin_users=1))
        make_user('boss@example.com', role='admin')
        response = user_client.get('/setup-admin')
        assert b'Maximum number of administrators has been reached' in response.data
