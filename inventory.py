import logging

from database import transaction
from errors import ConflictError, NotFoundError, ValidationError
from models import Book, check_text, text_fields

logger = logging.getLogger(__name__)

OPEN_ACTIONS = ('reserve', 'borrow')


class BookInventory:
    def __init__(self, conn):
        self.conn = conn

    # --- reads

    def get(self, book_id):
        row = self.conn.execute('SELECT * FROM books WHERE id = ?', (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def require(self, book_id):
        book = self.get(book_id)
        if book is None:
            raise NotFoundError('Book not found')
        return book

    def get_by_isbn(self, isbn):
        row = self.conn.execute('SELECT * FROM books WHERE isbn = ?', (isbn,)).fetchone()
        return Book.from_row(row) if row else None

    def list_books(self, search='', category='', availability=''):
        sql_query = 'SELECT * FROM books WHERE 1=1'
        query_params = []

        if search:
            sql_query += ' AND (title LIKE ? OR author LIKE ? OR isbn LIKE ?)'
            query_params.extend([f'%{search}%', f'%{search}%', f'%{search}%'])

        if category:
            sql_query += ' AND category = ?'
            query_params.append(category)

        if availability == 'available':
            sql_query += ' AND available_copies > 0'
        elif availability == 'unavailable':
            sql_query += ' AND available_copies = 0'

        sql_query += ' ORDER BY title'
        rows = self.conn.execute(sql_query, query_params).fetchall()
        return [Book.from_row(row) for row in rows]

    def open_record_count(self, book_id):
        return self.conn.execute('''
            SELECT COUNT(*) FROM circulation
            WHERE book_id = ? AND action IN (?, ?) AND returned = 0
        ''', (book_id, *OPEN_ACTIONS)).fetchone()[0]

    # --- admin writes

    def create(self, title, author, isbn, total_copies=1, available_copies=None,
               quantity=None, shelf=None, category=None, description=None,
               published_year=None, publisher=None, cover_image=None):
        if not title or not author or not isbn:
            raise ValidationError('Title, author and ISBN are required')
        check_text(title=title, author=author, isbn=isbn)
        extra = text_fields(
            {'shelf': shelf, 'category': category, 'description': description,
             'publisher': publisher, 'cover_image': cover_image},
            ('shelf', 'category', 'description', 'publisher', 'cover_image'))
        total_copies = _as_int('total_copies', total_copies)
        if total_copies < 0:
            raise ValidationError('total_copies cannot be negative')
        available_copies = total_copies if available_copies is None else _as_int('available_copies', available_copies)
        if not 0 <= available_copies <= total_copies:
            raise ValidationError('available_copies must be between 0 and total_copies')
        quantity = total_copies if quantity is None else _as_int('quantity', quantity)
        if published_year is not None:
            published_year = _as_int('published_year', published_year)

        with transaction(self.conn):
            if self.get_by_isbn(isbn):
                raise ConflictError('A book with this ISBN already exists')
            cursor = self.conn.execute('''
                INSERT INTO books (title, author, isbn, total_copies, available_copies, quantity,
                                   shelf, category, description, published_year, publisher, cover_image)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (title, author, isbn, total_copies, available_copies, quantity,
                  extra['shelf'], extra['category'], extra['description'], published_year,
                  extra['publisher'], extra['cover_image']))
        logger.info("Book %s '%s' added with %d copies", cursor.lastrowid, title, total_copies)
        return self.get(cursor.lastrowid)

    def update(self, book_id, changes):
        """Apply a BookUpdate; fields left as None keep their stored value.

        A new ``total_copies`` moves ``available_copies`` by the same amount,
        so copies currently held by readers stay held.
        """
        if changes.is_empty():
            raise ValidationError('No fields to update')

        with transaction(self.conn):
            book = self.require(book_id)
            if changes.isbn is not None and changes.isbn != book.isbn and self.get_by_isbn(changes.isbn):
                raise ConflictError('A book with this ISBN already exists')
            if changes.total_copies is not None and changes.total_copies < book.held_copies:
                raise ConflictError(
                    f'Cannot reduce total_copies below the {book.held_copies} copies currently held')

            self.conn.execute('''
                UPDATE books SET
                    title = COALESCE(?, title),
                    author = COALESCE(?, author),
                    isbn = COALESCE(?, isbn),
                    available_copies = available_copies + COALESCE(? - total_copies, 0),
                    total_copies = COALESCE(?, total_copies),
                    quantity = COALESCE(?, quantity),
                    shelf = COALESCE(?, shelf),
                    category = COALESCE(?, category),
                    description = COALESCE(?, description),
                    published_year = COALESCE(?, published_year),
                    publisher = COALESCE(?, publisher),
                    cover_image = COALESCE(?, cover_image)
                WHERE id = ?
            ''', (changes.title, changes.author, changes.isbn,
                  changes.total_copies, changes.total_copies, changes.quantity,
                  changes.shelf, changes.category, changes.description,
                  changes.published_year, changes.publisher, changes.cover_image,
                  book_id))
        logger.info('Book %s updated', book_id)
        return self.get(book_id)

    def set_cover_image(self, book_id, filename):
        with transaction(self.conn):
            self.require(book_id)
            self.conn.execute('UPDATE books SET cover_image = ? WHERE id = ?', (filename, book_id))
        return self.get(book_id)

    def delete(self, book_id):
        with transaction(self.conn):
            self.require(book_id)
            if self.open_record_count(book_id):
                raise ConflictError('Cannot delete a book with open reservations or loans')
            self.conn.execute('DELETE FROM books WHERE id = ?', (book_id,))
        logger.info('Book %s deleted', book_id)

    # --- counters, called by the circulation engine inside its transaction

    def apply_delta(self, book_id, delta):
        cursor = self.conn.execute(
            'UPDATE books SET available_copies = available_copies + ? WHERE id = ?',
            (delta, book_id))
        logger.info('Book %s available_copies %+d', book_id, delta)
        return cursor.rowcount == 1

    def take_copy(self, book_id):
        """Decrement availability only if a copy is free; False when none is."""
        cursor = self.conn.execute('''
            UPDATE books SET available_copies = available_copies - 1
            WHERE id = ? AND available_copies > 0
        ''', (book_id,))
        if cursor.rowcount == 1:
            logger.info('Book %s available_copies -1', book_id)
        return cursor.rowcount == 1

    def release_copy(self, book_id):
        return self.apply_delta(book_id, 1)


def _as_int(name, value):
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')
