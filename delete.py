import logging

from database import transaction

logger = logging.getLogger(__name__)


def reset_catalogue(conn):
    """Delete every circulation record and book and restart their ids at 1."""
    with transaction(conn):
        # Delete all circulation records first so no open loan outlives its book
        conn.execute("DELETE FROM circulation")
        conn.execute("DELETE FROM books")

        # Reset auto-increment counters
        conn.execute("DELETE FROM sqlite_sequence WHERE name IN ('books', 'circulation')")
    logger.info('Catalogue reset')


if __name__ == '__main__':
    import os

    from config import config
    from database import get_db_connection

    settings = config[os.environ.get('FLASK_CONFIG', 'default')]
    conn = get_db_connection(settings.DATABASE)
    reset_catalogue(conn)
    conn.close()

    print("Deleted all books and reset auto-increment counter.")
