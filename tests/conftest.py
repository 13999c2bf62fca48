"""
Shared pytest fixtures for league tests.

Running tests:
    pytest tests/
"""
import os
import sys
import tempfile
from concurrent.futures import Future

import pytest

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# The app module builds its store at import time; keep it away from the repo's data dir
os.environ.setdefault('LEAGUE_DATA_DIR', tempfile.mkdtemp(prefix='league-test-'))
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ.pop('OPENAI_API_KEY', None)

from league.cache import CacheConfig, QueryCache
from league.hooks import ResourceHooks
from league.insights import InsightGenerator
from league.models import Match, Player, Team
from league.store import YamlDocumentStore
from league import services


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualExecutor:
    """Executor that queues work until the test runs it."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((fn, args, kwargs, future))
        return future

    def run_all(self):
        while self.pending:
            fn, args, kwargs, future = self.pending.pop(0)
            future.set_result(fn(*args, **kwargs))

    def shutdown(self, wait=True):
        self.pending.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def store(tmp_path):
    """Empty YAML-backed store in a temp directory."""
    return YamlDocumentStore(str(tmp_path / 'data'))


@pytest.fixture
def cache(clock, executor):
    return QueryCache(CacheConfig(stale_after_ms=30_000), clock=clock, executor=executor)


@pytest.fixture
def generator(store):
    return InsightGenerator(store)


@pytest.fixture
def hooks(store, cache, generator):
    return ResourceHooks(store, cache, generator)


@pytest.fixture
def league(store):
    """Two teams, a roster and a played match.

    Returns a dict of the created ids.
    """
    alpha = services.create_team(store, Team(name='alpha'))
    bravo = services.create_team(store, Team(name='Bravo'))
    striker = services.add_player(store, Player(name='Sam Striker', position='Forward', number='9',
                                                team_id=alpha, stats={'goals': 5, 'assists': 1}))
    keeper = services.add_player(store, Player(name='Kim Keeper', position='Goalkeeper', team_id=bravo))
    played = services.create_match(store, Match(team1_id=alpha, team2_id=bravo, team1_name='alpha',
                                                team2_name='Bravo', date='2025-01-10', location='North Field',
                                                completed=True, score1=2, score2=1))
    upcoming = services.create_match(store, Match(team1_id=bravo, team2_id=alpha, team1_name='Bravo',
                                                  team2_name='alpha', date='2999-06-01', location='South Field'))
    return {'alpha': alpha, 'bravo': bravo, 'striker': striker, 'keeper': keeper,
            'played': played, 'upcoming': upcoming}


@pytest.fixture
def app_env(store, monkeypatch):
    """Point the Flask app at the temp store with a fresh cache."""
    import app as app_module

    test_cache = QueryCache(CacheConfig(stale_after_ms=30_000))
    test_generator = InsightGenerator(store)
    monkeypatch.setattr(app_module, 'store', store)
    monkeypatch.setattr(app_module, 'cache', test_cache)
    monkeypatch.setattr(app_module, 'generator', test_generator)
    monkeypatch.setattr(app_module, 'hooks', ResourceHooks(store, test_cache, test_generator))
    yield app_module
    test_cache.close()


def _make_user(store, email, role='user', password='secret123', active=True):
    from werkzeug.security import generate_password_hash
    from league.models import User
    return services.create_user(store, User(email=email, role=role, active=active,
                                            password_hash=generate_password_hash(password)))


@pytest.fixture
def make_user(store):
    """Factory creating users directly in the store; returns the id."""
    def factory(email, role='user', password='secret123', active=True):
        return _make_user(store, email, role, password, active)
    return factory


@pytest.fixture
def client(app_env):
    """Unauthenticated test client."""
    app_env.app.config['TESTING'] = True
    with app_env.app.test_client() as c:
        yield c


@pytest.fixture
def user_client(app_env, make_user):
    """Test client signed in as a regular user."""
    user_id = make_user('player@example.com')
    app_env.app.config['TESTING'] = True
    with app_env.app.test_client() as c:
        with c.session_transaction() as sess:
            sess['user_id'] = user_id
        c.user_id = user_id
        yield c


@pytest.fixture
def admin_client(app_env, make_user):
    """Test client signed in as an administrator."""
    user_id = make_user('admin@example.com', role='admin')
    app_env.app.config['TESTING'] = True
    with app_env.app.test_client() as c:
        with c.session_transaction() as sess:
            sess['user_id'] = user_id
        c.user_id = user_id
        yield c
