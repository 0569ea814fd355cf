from notifications import NotificationSink


def library_stats(conn, user_id, recent=5):
    """Counts for the dashboard plus the caller's latest notifications."""
    books = conn.execute('''
        SELECT COUNT(*) AS total_books, COALESCE(SUM(available_copies), 0) AS available_books
        FROM books
    ''').fetchone()
    circulation = conn.execute('''
        SELECT
            SUM(CASE WHEN action = 'borrow' AND returned = 0 THEN 1 ELSE 0 END) AS borrowed_books,
            SUM(CASE WHEN action = 'reserve' AND returned = 0 THEN 1 ELSE 0 END) AS pending_reservations
        FROM circulation
    ''').fetchone()

    notifications = [
        {
            'id': n.id,
            'title': n.title,
            'message': n.message,
            'date': n.created_at,
            'is_read': n.is_read,
        }
        for n in NotificationSink(conn).list_for_user(user_id, limit=recent)
    ]

    return {
        'totalBooks': books['total_books'],
        'availableBooks': books['available_books'],
        'borrowedBooks': circulation['borrowed_books'] or 0,
        'pendingReservations': circulation['pending_reservations'] or 0,
        'notifications': notifications,
    }
