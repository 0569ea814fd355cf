from add import books, seed_books
from conftest import open_count
from dashboard import library_stats
from delete import reset_catalogue


def test_seed_books_skips_existing_isbns(conn, inventory):
    assert seed_books(conn) == len(books)
    assert seed_books(conn) == 0
    assert len(inventory.list_books()) == len(books)


def test_seed_books_with_custom_catalogue(conn, inventory):
    added = seed_books(conn, [('Small', 'Writer', 'S-1', 2, 'Misc')])
    assert added == 1
    assert inventory.get_by_isbn('S-1').available_copies == 2


def test_reset_catalogue_clears_books_and_records(conn, engine, inventory, alice):
    seed_books(conn)
    first = inventory.list_books()[0]
    engine.reserve(alice, first.id)

    reset_catalogue(conn)

    assert inventory.list_books() == []
    assert open_count(conn, first.id) == 0
    new = inventory.create('Fresh', 'Writer', 'F-1')
    assert new.id == 1


def test_library_stats(conn, engine, inventory, admin, alice):
    book = inventory.create('Stats', 'Writer', 'ST-1', total_copies=3)
    other = inventory.create('Other', 'Writer', 'ST-2', total_copies=1)
    first = engine.reserve(alice, book.id)
    engine.reserve(alice, other.id)
    engine.approve(admin, first.id)

    stats = library_stats(conn, admin.id)

    assert stats['totalBooks'] == 2
    assert stats['availableBooks'] == 2
    assert stats['borrowedBooks'] == 1
    assert stats['pendingReservations'] == 1
    assert [n['title'] for n in stats['notifications']] == ['Book Reservation', 'Book Reservation']

    patron_stats = library_stats(conn, alice.id)
    assert [n['title'] for n in patron_stats['notifications']] == ['Reservation Approved']


def test_library_stats_on_empty_catalogue(conn, admin):
    stats = library_stats(conn, admin.id)
    assert stats['totalBooks'] == 0
    assert stats['availableBooks'] == 0
    assert stats['borrowedBooks'] == 0
    assert stats['pendingReservations'] == 0


def test_seed_books_with_empty_catalogue(conn, inventory):
    assert seed_books(conn, []) == 0
    assert inventory.list_books() == []
