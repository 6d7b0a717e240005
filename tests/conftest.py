import pytest

from app import create_app
from model import db

STORAGES = ['memory', 'local', 'hosted']


def build_app(tmp_path, storage, **overrides):
    config = {
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SESSION_COOKIE_SECURE': False,
        'TASKBOARD_STORAGE': storage,
        'TASKBOARD_DATA_FILE': str(tmp_path / 'taskboard.json'),
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///' + str(tmp_path / 'tasks.db'),
    }
    config.update(overrides)
    return create_app(config)


def teardown_app(app):
    if app.config['TASKBOARD_STORAGE'] == 'hosted':
        with app.app_context():
            db.session.remove()
            db.engine.dispose()


@pytest.fixture(params=STORAGES)
def app(request, tmp_path):
    app = build_app(tmp_path, request.param)
    yield app
    teardown_app(app)


@pytest.fixture
def hosted_app(tmp_path):
    app = build_app(tmp_path, 'hosted')
    yield app
    teardown_app(app)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    with app.app_context():
        yield app.extensions['taskboard_store']


@pytest.fixture
def sql_store(hosted_app):
    with hosted_app.app_context():
        yield hosted_app.extensions['taskboard_store']
