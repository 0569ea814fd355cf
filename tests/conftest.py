from datetime import datetime, timedelta

import pytest

from auth import Identity
from circulation import CirculationEngine
from database import create_default_admin, get_db_connection, init_db
from inventory import BookInventory
from notifications import NotificationSink
from server import create_app
from users import UserDirectory

ADMIN_PASSWORD = 'admin-pass'


class Clock:
    """Settable stand-in for datetime.now."""

    def __init__(self, now):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 10, 12, 0, 0))


@pytest.fixture
def conn(tmp_path):
    connection = get_db_connection(str(tmp_path / 'library.db'))
    init_db(connection)
    create_default_admin(connection, 'admin', 'admin@library.local', ADMIN_PASSWORD)
    yield connection
    connection.close()


@pytest.fixture
def admin(conn):
    user = UserDirectory(conn).get_by_username('admin')
    return Identity(user.id, user.username, user.email, user.role)


@pytest.fixture
def make_user(conn, admin):
    directory = UserDirectory(conn)

    def _make_user(username, role='patron'):
        user = directory.register(username, f'{username}@example.com', 'secret', role=role, caller=admin)
        return Identity(user.id, user.username, user.email, user.role)

    return _make_user


@pytest.fixture
def alice(make_user):
    return make_user('alice')


@pytest.fixture
def bob(make_user):
    return make_user('bob')


@pytest.fixture
def inventory(conn):
    return BookInventory(conn)


@pytest.fixture
def sink(conn):
    return NotificationSink(conn)


@pytest.fixture
def engine(conn, clock):
    return CirculationEngine(conn, loan_period_days=14, fine_per_day=1.00, clock=clock)


@pytest.fixture
def app(tmp_path, clock):
    app = create_app(
        'testing',
        DATABASE=str(tmp_path / 'api.db'),
        BOOK_COVER_UPLOAD_FOLDER=str(tmp_path / 'covers'),
        CLOCK=clock,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(username, password):
        res = client.post('/api/users/login', json={'username': username, 'password': password})
        assert res.status_code == 200, res.get_json()
        return {'Authorization': f"Bearer {res.get_json()['token']}"}

    return _login


@pytest.fixture
def admin_headers(login):
    return login('admin', ADMIN_PASSWORD)


@pytest.fixture
def register(client):
    def _register(username, password='secret'):
        res = client.post('/api/users/register', json={
            'username': username,
            'email': f'{username}@example.com',
            'password': password,
        })
        assert res.status_code == 201, res.get_json()
        body = res.get_json()
        return body['user'], {'Authorization': f"Bearer {body['token']}"}

    return _register


def open_count(conn, book_id):
    return conn.execute('''
        SELECT COUNT(*) FROM circulation
        WHERE book_id = ? AND action IN ('reserve', 'borrow') AND returned = 0
    ''', (book_id,)).fetchone()[0]
