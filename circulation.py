import logging
import math
from datetime import date, datetime, timedelta

from database import format_timestamp, transaction
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from inventory import OPEN_ACTIONS, BookInventory
from models import Action, CirculationRecord
from notifications import NotificationSink

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def compute_fine(due_date, returned_at, fine_per_day=1.00):
    """Late fee: each started day past ``due_date`` costs ``fine_per_day``."""
    if due_date is None or returned_at <= due_date:
        return 0.0
    days_overdue = math.ceil((returned_at - due_date).total_seconds() / SECONDS_PER_DAY)
    return round(days_overdue * fine_per_day, 2)


def parse_due_date(value):
    """Accept an ISO-8601 date or datetime (string or object)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError('due_date must be an ISO-8601 date or datetime')
    else:
        raise ValidationError('due_date must be an ISO-8601 date or datetime')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def _parse_timestamp(value):
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _require_id(value, name):
    if value is None or value == '' or isinstance(value, bool):
        raise ValidationError(f'{name} is required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


def _money(amount):
    return f'${amount:.2f}'


class CirculationEngine:
    """Reserve, approve, cancel and return.

    Each operation runs in one transaction, so the record, the book's copy
    counter and the notifications change together or not at all.
    """

    def __init__(self, conn, loan_period_days=14, fine_per_day=1.00, clock=None):
        self.conn = conn
        self.books = BookInventory(conn)
        self.notifications = NotificationSink(conn, clock=self.now)
        self.loan_period_days = loan_period_days
        self.fine_per_day = fine_per_day
        self.clock = clock or datetime.now

    def now(self):
        return self.clock().replace(microsecond=0)

    # --- reads

    def get(self, circulation_id):
        row = self.conn.execute('SELECT * FROM circulation WHERE id = ?', (circulation_id,)).fetchone()
        return CirculationRecord.from_row(row) if row else None

    def require(self, circulation_id):
        record = self.get(circulation_id)
        if record is None:
            raise NotFoundError('Circulation record not found')
        return record

    def user_history(self, user_id):
        """All of a user's records, newest first."""
        rows = self.conn.execute('''
            SELECT c.*, u.username, b.title AS book_title, b.author AS book_author
            FROM circulation c
            JOIN books b ON c.book_id = b.id
            JOIN users u ON c.user_id = u.id
            WHERE c.user_id = ?
            ORDER BY c.action_date DESC, c.id DESC
        ''', (user_id,)).fetchall()
        return [_enriched(row) for row in rows]

    def open_records(self):
        """Every reservation and loan still holding a copy, newest first."""
        rows = self.conn.execute('''
            SELECT c.*, u.username, u.email, u.role,
                   b.title AS book_title, b.author AS book_author, b.isbn, b.cover_image, b.available_copies
            FROM circulation c
            JOIN users u ON c.user_id = u.id
            JOIN books b ON c.book_id = b.id
            WHERE c.action IN (?, ?) AND c.returned = 0
            ORDER BY c.action_date DESC, c.id DESC
        ''', OPEN_ACTIONS).fetchall()
        return [_enriched(row) for row in rows]

    def borrowed_books(self, user_id):
        """A user's open records with the book's catalogue details."""
        rows = self.conn.execute('''
            SELECT c.*, b.title, b.author, b.isbn, b.cover_image
            FROM circulation c
            JOIN books b ON c.book_id = b.id
            WHERE c.user_id = ? AND c.action IN (?, ?) AND c.returned = 0
            ORDER BY c.action_date DESC, c.id DESC
        ''', (user_id, *OPEN_ACTIONS)).fetchall()
        books = []
        for row in rows:
            item = dict(row)
            item['returned'] = bool(item['returned'])
            books.append(item)
        return books

    def records_for(self, caller, user_id=None):
        # Patrons only ever see their own history
        if not caller.is_admin:
            return self.user_history(caller.id)
        if user_id:
            return self.user_history(_require_id(user_id, 'userId'))
        return self.open_records()

    # --- transitions

    def reserve(self, caller, book_id, due_date=None):
        book_id = _require_id(book_id, 'Book ID')
        due = parse_due_date(due_date)

        with transaction(self.conn):
            book = self.books.require(book_id)
            if not self.books.take_copy(book_id):
                raise ConflictError('No copies available for reservation')

            now = self.now()
            if due is None:
                due = now + timedelta(days=self.loan_period_days)
            cursor = self.conn.execute('''
                INSERT INTO circulation (user_id, book_id, action, action_date, due_date)
                VALUES (?, ?, ?, ?, ?)
            ''', (caller.id, book_id, Action.RESERVE.value, format_timestamp(now), format_timestamp(due)))

            self.notifications.notify_admins(
                'Book Reservation',
                f"User {caller.username} has reserved the book '{book.title}'")

        logger.info('User %s reserved book %s (record %s)', caller.id, book_id, cursor.lastrowid)
        return self.get(cursor.lastrowid)

    def borrow(self, caller, book_id, due_date=None):
        """Kept for older clients: a borrow request is a reservation awaiting approval."""
        return self.reserve(caller, book_id, due_date)

    def approve(self, caller, circulation_id):
        if not caller.is_admin:
            raise ForbiddenError('Admin access required')
        circulation_id = _require_id(circulation_id, 'Circulation ID')

        with transaction(self.conn):
            record = self.require(circulation_id)
            if record.action != Action.RESERVE.value:
                raise ConflictError('Only reservations can be approved')

            self.conn.execute('UPDATE circulation SET action = ? WHERE id = ?',
                              (Action.BORROW.value, circulation_id))
            book = self.books.require(record.book_id)
            self.notifications.notify_user(
                record.user_id,
                'Reservation Approved',
                f"Your reservation for '{book.title}' has been approved. "
                f"The book is now checked out to you.")

        logger.info('Admin %s approved record %s', caller.id, circulation_id)
        return self.get(circulation_id)

    def cancel(self, caller, circulation_id):
        circulation_id = _require_id(circulation_id, 'Circulation ID')

        with transaction(self.conn):
            record = self.require(circulation_id)
            if not caller.owns(record.user_id) and not caller.is_admin:
                raise ForbiddenError('You can only cancel your own reservations')
            if not record.is_open:
                raise ConflictError('Only reservations or borrows can be cancelled')

            self.conn.execute('DELETE FROM circulation WHERE id = ?', (circulation_id,))
            self.books.release_copy(record.book_id)

            book = self.books.require(record.book_id)
            if not caller.is_admin:
                self.notifications.notify_admins(
                    'Reservation Cancelled',
                    f"User {caller.username} has cancelled their reservation for '{book.title}'")
            elif not caller.owns(record.user_id):
                self.notifications.notify_user(
                    record.user_id,
                    'Reservation Cancelled',
                    f"Your reservation for '{book.title}' has been cancelled by an administrator")

        logger.info('User %s cancelled record %s', caller.id, circulation_id)
        return record

    def return_book(self, caller, circulation_id):
        circulation_id = _require_id(circulation_id, 'Circulation ID')

        with transaction(self.conn):
            record = self.require(circulation_id)
            if not caller.owns(record.user_id) and not caller.is_admin:
                raise ForbiddenError('You can only return your own borrowed books')
            if record.action != Action.BORROW.value or record.returned:
                raise ConflictError('Only borrowed books can be returned')

            fine = compute_fine(_parse_timestamp(record.due_date), self.now(), self.fine_per_day)
            self.conn.execute('''
                UPDATE circulation SET action = ?, returned = 1, fine_amount = ? WHERE id = ?
            ''', (Action.RETURN.value, fine, circulation_id))
            self.books.release_copy(record.book_id)

            book = self.books.require(record.book_id)
            fine_note = f' with a fine of {_money(fine)}' if fine > 0 else ''
            self.notifications.notify_admins(
                'Book Returned',
                f"User {caller.username} has returned the book '{book.title}'{fine_note}")
            if fine > 0:
                self.notifications.notify_user(
                    record.user_id,
                    'Late Return Fine',
                    f"You have been charged a fine of {_money(fine)} for returning "
                    f"'{book.title}' after the due date")

        logger.info('Record %s returned, fine %.2f', circulation_id, fine)
        return self.get(circulation_id), fine

    # --- maintenance

    def reconcile_inventory(self):
        """Reset every book's availability to total copies minus open records.

        Returns ``(book_id, old, new)`` for each book that was corrected.
        """
        corrected = []
        with transaction(self.conn):
            rows = self.conn.execute('''
                SELECT b.id, b.total_copies, b.available_copies,
                       (SELECT COUNT(*) FROM circulation c
                        WHERE c.book_id = b.id AND c.action IN (?, ?) AND c.returned = 0) AS open_count
                FROM books b
            ''', OPEN_ACTIONS).fetchall()
            for row in rows:
                expected = max(0, row['total_copies'] - row['open_count'])
                if expected != row['available_copies']:
                    self.books.apply_delta(row['id'], expected - row['available_copies'])
                    corrected.append((row['id'], row['available_copies'], expected))
        for book_id, old, new in corrected:
            logger.warning('Book %s availability corrected from %d to %d', book_id, old, new)
        return corrected


def _enriched(row):
    return {
        'id': row['id'],
        'user_id': row['user_id'],
        'username': row['username'],
        'book_id': row['book_id'],
        'book_title': row['book_title'],
        'book_author': row['book_author'],
        'action': row['action'],
        'action_date': row['action_date'],
        'due_date': row['due_date'],
        'fine_amount': float(row['fine_amount'] or 0),
        'returned': bool(row['returned']),
    }
