import pytest

from errors import AuthenticationError, ConflictError, ForbiddenError, ValidationError
from models import UserUpdate
from users import UserDirectory


@pytest.fixture
def directory(conn):
    return UserDirectory(conn)


def test_register_and_authenticate(directory):
    user = directory.register('dave', 'dave@example.com', 'pw')
    assert user.role == 'patron'
    assert user.password_hash != 'pw'
    assert 'password_hash' not in user.to_dict()

    assert directory.authenticate('dave', 'pw').id == user.id
    with pytest.raises(AuthenticationError):
        directory.authenticate('dave', 'nope')
    with pytest.raises(AuthenticationError):
        directory.authenticate('nobody', 'pw')
    with pytest.raises(ValidationError):
        directory.authenticate('dave', '')


def test_self_registration_cannot_grant_admin(directory, admin):
    assert directory.register('eve', 'eve@example.com', 'pw', role='admin').role == 'patron'
    assert directory.register('frank', 'frank@example.com', 'pw', role='admin', caller=admin).role == 'admin'


def test_register_rejects_duplicates(directory, alice):
    with pytest.raises(ConflictError):
        directory.register('alice', 'other@example.com', 'pw')
    with pytest.raises(ConflictError):
        directory.register('alice2', 'alice@example.com', 'pw')
    with pytest.raises(ValidationError):
        directory.register('zoe', '', 'pw')


def test_patron_updates_own_account_but_not_role(directory, alice):
    updated = directory.update(alice.id, UserUpdate(email='alice@new.example', role='admin'), alice)
    assert updated.email == 'alice@new.example'
    assert updated.role == 'patron'
    assert updated.username == 'alice'


def test_patron_cannot_update_someone_else(directory, alice, bob):
    with pytest.raises(ForbiddenError):
        directory.update(bob.id, UserUpdate(email='x@example.com'), alice)


def test_password_change(directory, alice):
    directory.update(alice.id, UserUpdate(password='new-password'), alice)
    assert directory.authenticate('alice', 'new-password').id == alice.id


def test_last_admin_is_protected(directory, admin, alice):
    with pytest.raises(ConflictError):
        directory.update(admin.id, UserUpdate(role='patron'), admin)
    with pytest.raises(ConflictError):
        directory.delete(admin.id, admin)

    directory.update(alice.id, UserUpdate(role='admin'), admin)
    directory.update(admin.id, UserUpdate(role='patron'), admin)
    assert directory.admin_count() == 1


def test_delete_requires_admin_and_no_open_records(directory, engine, inventory, admin, alice, bob):
    book = inventory.create('Held', 'Author', '135', total_copies=1)
    engine.reserve(alice, book.id)

    with pytest.raises(ForbiddenError):
        directory.delete(bob.id, alice)
    with pytest.raises(ConflictError):
        directory.delete(alice.id, admin)

    directory.delete(bob.id, admin)
    assert directory.get(bob.id) is None


def test_user_update_payload_validates_role():
    with pytest.raises(ValidationError):
        UserUpdate.from_payload({'role': 'librarian'})
    assert UserUpdate.from_payload({'username': ' grace '}).username == 'grace'


def test_password_whitespace_is_kept_on_update(directory, alice):
    directory.update(alice.id, UserUpdate.from_payload({'password': ' pw '}), alice)
    assert directory.authenticate('alice', ' pw ').id == alice.id
    with pytest.raises(AuthenticationError):
        directory.authenticate('alice', 'pw')


def test_register_rejects_non_string_fields(directory):
    with pytest.raises(ValidationError):
        directory.register('sam', 'sam@example.com', 12345)
    with pytest.raises(ValidationError):
        directory.register(['sam'], 'sam@example.com', 'pw')
    assert directory.get_by_email('sam@example.com') is None
