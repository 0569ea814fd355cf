import pytest

from errors import ForbiddenError, NotFoundError


def test_broadcast_reaches_current_admins_only(sink, admin, make_user):
    second_admin = make_user('second_admin', role='admin')
    sink.notify_admins('Inventory', 'Shelf A is full')
    late_admin = make_user('late_admin', role='admin')

    assert [n.title for n in sink.list_for_user(admin.id)] == ['Inventory']
    assert [n.title for n in sink.list_for_user(second_admin.id)] == ['Inventory']
    assert sink.list_for_user(late_admin.id) == []


def test_create_without_user_broadcasts(sink, admin, alice):
    ids = sink.create(None, 'Maintenance', 'Closed on Friday')
    assert len(ids) == 1
    assert sink.get(ids[0]).user_id == admin.id
    assert sink.list_for_user(alice.id) == []


def test_list_is_newest_first_and_limited(sink, alice):
    for i in range(3):
        sink.notify_user(alice.id, f'Note {i}', 'text')

    assert [n.title for n in sink.list_for_user(alice.id)] == ['Note 2', 'Note 1', 'Note 0']
    assert [n.title for n in sink.list_for_user(alice.id, limit=2)] == ['Note 2', 'Note 1']


def test_mark_read(sink, alice):
    notification_id = sink.notify_user(alice.id, 'Hello', 'Welcome')
    assert sink.unread_count(alice.id) == 1

    notification = sink.mark_read(notification_id, alice)

    assert notification.is_read is True
    assert sink.unread_count(alice.id) == 0


def test_only_owner_or_admin_may_manage(sink, admin, alice, bob):
    notification_id = sink.notify_user(alice.id, 'Private', 'For alice')

    with pytest.raises(ForbiddenError):
        sink.mark_read(notification_id, bob)
    with pytest.raises(ForbiddenError):
        sink.delete(notification_id, bob)

    sink.delete(notification_id, admin)
    assert sink.get(notification_id) is None


def test_missing_notification(sink, alice):
    with pytest.raises(NotFoundError):
        sink.mark_read(12345, alice)
