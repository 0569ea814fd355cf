import logging

from inventory import BookInventory

logger = logging.getLogger(__name__)

# Sample catalogue: (title, author, isbn, copies, category)
books = [
    ('Introduction to Algorithms', 'Thomas H. Cormen', '9780262033848', 3, 'Computer Science'),
    ('Operating System Concepts', 'Abraham Silberschatz', '9781118063330', 2, 'Computer Science'),
    ('Computer Networks', 'Andrew S. Tanenbaum', '9780132126953', 2, 'Computer Science'),
    ('Database System Concepts', 'Abraham Silberschatz', '9780073523323', 2, 'Computer Science'),
    ('Compilers: Principles, Techniques, and Tools', 'Alfred V. Aho', '9780321486813', 1, 'Computer Science'),
    ('Software Engineering', 'Ian Sommerville', '9780133943030', 2, 'Computer Science'),
    ('Artificial Intelligence: A Modern Approach', 'Stuart Russell', '9780136042594', 2, 'AI/ML'),
    ('Machine Learning', 'Tom M. Mitchell', '9780070428072', 1, 'AI/ML'),
    ('Linear Algebra and Its Applications', 'Gilbert Strang', '9780030105678', 2, 'Mathematics'),
    ('Discrete Mathematics and Its Applications', 'Kenneth H. Rosen', '9780073383095', 3, 'Mathematics'),
    ('The Art of Electronics', 'Paul Horowitz', '9780521809269', 1, 'Electronics'),
    ('Signals and Systems', 'Alan V. Oppenheim', '9780138147570', 1, 'Electronics'),
]


def seed_books(conn, catalogue=None):
    """Add the sample catalogue, skipping ISBNs already on the shelves.

    Returns the number of books inserted.
    """
    inventory = BookInventory(conn)
    added = 0
    for title, author, isbn, copies, category in books if catalogue is None else catalogue:
        if inventory.get_by_isbn(isbn):
            continue
        inventory.create(title, author, isbn, total_copies=copies, category=category)
        added += 1
    logger.info('%d sample books added', added)
    return added


if __name__ == '__main__':
    import os

    from config import config
    from database import get_db_connection, init_db

    settings = config[os.environ.get('FLASK_CONFIG', 'default')]
    conn = get_db_connection(settings.DATABASE)
    init_db(conn)
    count = seed_books(conn)
    conn.close()

    print(f"{count} books added successfully!")
