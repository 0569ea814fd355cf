import logging
import sqlite3
from contextlib import contextmanager

from werkzeug.security import generate_password_hash

from errors import InternalError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_db_connection(path):
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def init_db(conn):
    c = conn.cursor()

    # Create users table
    c.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            role TEXT CHECK(role IN ('admin', 'patron')) NOT NULL DEFAULT 'patron',
            created_at TIMESTAMP DEFAULT (datetime('now', 'localtime'))
        )
    ''')

    # Create books table; the CHECK keeps availability inside [0, total_copies]
    c.execute('''
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            isbn TEXT UNIQUE NOT NULL,
            total_copies INTEGER NOT NULL DEFAULT 1 CHECK(total_copies >= 0),
            available_copies INTEGER NOT NULL DEFAULT 1
                CHECK(available_copies >= 0 AND available_copies <= total_copies),
            quantity INTEGER NOT NULL DEFAULT 1,
            shelf TEXT,
            category TEXT,
            description TEXT,
            published_year INTEGER,
            publisher TEXT,
            cover_image TEXT,
            created_at TIMESTAMP DEFAULT (datetime('now', 'localtime'))
        )
    ''')

    # Create circulation table
    c.execute('''
        CREATE TABLE IF NOT EXISTS circulation (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            book_id INTEGER NOT NULL,
            action TEXT CHECK(action IN ('reserve', 'borrow', 'return')) NOT NULL,
            action_date TIMESTAMP NOT NULL,
            due_date TIMESTAMP,
            fine_amount REAL NOT NULL DEFAULT 0,
            returned INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE
        )
    ''')

    # Create notifications table
    c.execute('''
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT (datetime('now', 'localtime')),
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    ''')

    c.execute('CREATE INDEX IF NOT EXISTS idx_circulation_user ON circulation(user_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_circulation_book ON circulation(book_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)')

    conn.commit()
    logger.info('Database schema ready')


def create_default_admin(conn, username, email, password):
    """Insert an admin account unless one already exists.

    Returns the new admin's id, or None when an admin was already present.
    """
    admin = conn.execute("SELECT id FROM users WHERE role = 'admin' LIMIT 1").fetchone()
    if admin:
        return None

    cursor = conn.execute('''
        INSERT INTO users (username, email, password_hash, role)
        VALUES (?, ?, ?, 'admin')
    ''', (username, email, generate_password_hash(password)))
    conn.commit()
    logger.info("Default admin user '%s' created", username)
    return cursor.lastrowid


@contextmanager
def transaction(conn):
    """Run a block as one atomic unit.

    Commits when the block finishes and rolls back on any exception.  sqlite
    errors are re-raised as InternalError after the rollback; service errors
    propagate unchanged.  A nested call joins the enclosing transaction.
    """
    if conn.in_transaction:
        yield conn
        return

    conn.execute('BEGIN IMMEDIATE')
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.exception('Transaction rolled back')
        raise InternalError('A database error occurred') from exc
    except BaseException:
        conn.rollback()
        raise


def format_timestamp(value):
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)
