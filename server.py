import logging
import os
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, g, jsonify, request
from PIL import Image, UnidentifiedImageError
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from add import seed_books
from auth import bearer_token, issue_token, verify_token
from circulation import CirculationEngine
from config import config
from dashboard import library_stats
from database import create_default_admin, get_db_connection, init_db
from delete import reset_catalogue
from errors import AuthenticationError, ForbiddenError, LibraryError, ValidationError
from inventory import BookInventory
from models import BookUpdate, UserUpdate
from notifications import NotificationSink
from users import UserDirectory

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


def create_app(config_name=None, **overrides):
    config_name = config_name or os.environ.get('FLASK_CONFIG', 'default')
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    app.config.update(overrides)
    config[config_name].init_app(app)

    # Create upload folder if it doesn't exist
    os.makedirs(app.config['BOOK_COVER_UPLOAD_FOLDER'], exist_ok=True)

    app.register_blueprint(api)
    app.teardown_appcontext(close_db)
    app.after_request(add_cors_headers)
    app.register_error_handler(LibraryError, handle_library_error)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(Exception, handle_unexpected_error)
    register_commands(app)

    with app.app_context():
        setup_database()

    return app


# --- DB Helpers ---

def get_db():
    if 'db' not in g:
        g.db = get_db_connection(current_app.config['DATABASE'])
    return g.db


def close_db(exc=None):
    conn = g.pop('db', None)
    if conn is not None:
        conn.close()


def setup_database():
    conn = get_db()
    init_db(conn)
    create_default_admin(
        conn,
        current_app.config['DEFAULT_ADMIN_USERNAME'],
        current_app.config['DEFAULT_ADMIN_EMAIL'],
        current_app.config['DEFAULT_ADMIN_PASSWORD'],
    )


def get_engine():
    return CirculationEngine(
        get_db(),
        loan_period_days=current_app.config['LOAN_PERIOD_DAYS'],
        fine_per_day=current_app.config['FINE_PER_DAY'],
        clock=current_app.config.get('CLOCK'),
    )


def make_token(user):
    return issue_token(
        user,
        current_app.config['JWT_SECRET_KEY'],
        algorithm=current_app.config['JWT_ALGORITHM'],
        lifetime=current_app.config['TOKEN_LIFETIME'],
    )


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


# --- Authentication & decorators ---

def request_identity():
    token = bearer_token(request.headers.get('Authorization'))
    return verify_token(token, current_app.config['JWT_SECRET_KEY'], current_app.config['JWT_ALGORITHM'])


def login_required(f):
    """Decorator to check for a valid bearer token before running a route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not request.headers.get('Authorization'):
            raise AuthenticationError('Authentication required')
        identity = request_identity()
        if identity is None:
            raise AuthenticationError('Invalid token')
        g.identity = identity
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not g.identity.is_admin:
            raise ForbiddenError('Admin access required')
        return f(*args, **kwargs)
    return decorated_function


# --- Response hooks ---

def add_cors_headers(response):
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
    return response


def handle_library_error(error):
    return jsonify(error.to_dict()), error.status_code


def handle_http_error(error):
    if error.code == 404:
        return jsonify({'message': 'Endpoint not found'}), 404
    return jsonify({'message': error.description}), error.code


def handle_unexpected_error(error):
    logger.exception('Unhandled error while serving %s %s', request.method, request.path)
    return jsonify({'message': 'Internal server error'}), 500


@api.route('/')
def index():
    return jsonify({'message': 'Welcome to the Library Management System API'})


# --- Users & authentication ---

@api.route('/users/login', methods=['POST'])
def login():
    data = json_body()
    user = UserDirectory(get_db()).authenticate(data.get('username'), data.get('password'))
    return jsonify({'token': make_token(user), 'user': user.to_dict()})


@api.route('/users/register', methods=['POST'])
def register():
    data = json_body()
    # Only an admin token may create another admin
    caller = request_identity() if request.headers.get('Authorization') else None
    user = UserDirectory(get_db()).register(
        data.get('username'),
        data.get('email'),
        data.get('password'),
        role=data.get('role'),
        caller=caller,
    )
    return jsonify({
        'message': 'User registered successfully',
        'token': make_token(user),
        'user': user.to_dict(),
    }), 201


@api.route('/users', methods=['GET'])
@admin_required
def list_users():
    return jsonify([user.to_dict() for user in UserDirectory(get_db()).list_users()])


@api.route('/users/<int:user_id>', methods=['GET'])
@login_required
def get_user(user_id):
    if not g.identity.owns(user_id) and not g.identity.is_admin:
        raise ForbiddenError('You can only view your own account')
    return jsonify(UserDirectory(get_db()).require(user_id).to_dict())


@api.route('/users/<int:user_id>', methods=['PUT'])
@login_required
def update_user(user_id):
    changes = UserUpdate.from_payload(json_body())
    user = UserDirectory(get_db()).update(user_id, changes, g.identity)
    return jsonify({'message': 'User updated successfully', 'user': user.to_dict()})


@api.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    UserDirectory(get_db()).delete(user_id, g.identity)
    return jsonify({'message': 'User deleted successfully'})


# --- Books ---

@api.route('/books', methods=['GET'])
def list_books():
    books = BookInventory(get_db()).list_books(
        search=request.args.get('search', '').strip(),
        category=request.args.get('category', '').strip(),
        availability=request.args.get('availability', '').strip(),
    )
    return jsonify([book.to_dict() for book in books])


@api.route('/books/<int:book_id>', methods=['GET'])
def get_book(book_id):
    return jsonify(BookInventory(get_db()).require(book_id).to_dict())


@api.route('/books', methods=['POST'])
@admin_required
def add_book():
    data = json_body()
    book = BookInventory(get_db()).create(
        data.get('title'),
        data.get('author'),
        data.get('isbn'),
        total_copies=data.get('total_copies', 1),
        available_copies=data.get('available_copies'),
        quantity=data.get('quantity'),
        shelf=data.get('shelf'),
        category=data.get('category'),
        description=data.get('description'),
        published_year=data.get('published_year'),
        publisher=data.get('publisher'),
        cover_image=data.get('cover_image'),
    )
    return jsonify(book.to_dict()), 201


@api.route('/books/<int:book_id>', methods=['PUT'])
@admin_required
def update_book(book_id):
    changes = BookUpdate.from_payload(json_body())
    book = BookInventory(get_db()).update(book_id, changes)
    return jsonify(book.to_dict())


@api.route('/books/<int:book_id>', methods=['DELETE'])
@admin_required
def delete_book(book_id):
    BookInventory(get_db()).delete(book_id)
    return jsonify({'message': 'Book deleted successfully'})


@api.route('/books/<int:book_id>/cover', methods=['POST'])
@admin_required
def upload_cover(book_id):
    inventory = BookInventory(get_db())
    inventory.require(book_id)

    file = request.files.get('cover_image')
    if not file or file.filename == '':
        raise ValidationError('No cover image uploaded')
    if not allowed_file(file.filename):
        raise ValidationError('Invalid file type for cover image.')

    filename = secure_filename(f"book_{book_id}_{file.filename}")
    filepath = os.path.join(current_app.config['BOOK_COVER_UPLOAD_FOLDER'], filename)
    try:
        # Resize and save image
        image = Image.open(file.stream)
        image.thumbnail(current_app.config['COVER_THUMBNAIL_SIZE'])
        image.save(filepath)
    except (UnidentifiedImageError, OSError):
        raise ValidationError('Uploaded file is not a valid image')

    book = inventory.set_cover_image(book_id, filename)
    return jsonify(book.to_dict())


# --- Circulation ---

@api.route('/circulation', methods=['GET'])
@login_required
def circulation_records():
    records = get_engine().records_for(g.identity, request.args.get('userId'))
    return jsonify(records)


@api.route('/circulation/reserve', methods=['POST'])
@login_required
def reserve_book():
    data = json_body()
    record = get_engine().reserve(g.identity, data.get('book_id'), data.get('due_date'))
    return jsonify({'message': 'Book reserved successfully', 'circulation': record.to_dict()}), 201


@api.route('/circulation/borrow', methods=['POST'])
@login_required
def borrow_book():
    # Borrow requests wait for approval exactly like reservations
    data = json_body()
    record = get_engine().borrow(g.identity, data.get('book_id'), data.get('due_date'))
    return jsonify({'message': 'Book reserved successfully', 'circulation': record.to_dict()}), 201


@api.route('/circulation/approve', methods=['POST'])
@login_required
def approve_reservation():
    if not g.identity.is_admin:
        raise ForbiddenError('Admin access required')
    data = json_body()
    record = get_engine().approve(g.identity, data.get('circulation_id'))
    return jsonify({'message': 'Reservation approved successfully', 'circulation': record.to_dict()})


@api.route('/circulation/cancel', methods=['POST'])
@login_required
def cancel_reservation():
    data = json_body()
    get_engine().cancel(g.identity, data.get('circulation_id'))
    return jsonify({'message': 'Reservation cancelled successfully'})


@api.route('/circulation/return', methods=['POST'])
@login_required
def return_book():
    data = json_body()
    record, fine = get_engine().return_book(g.identity, data.get('circulation_id'))
    message = 'Book returned successfully'
    if fine > 0:
        message += f' with a fine of ${fine:.2f}'
    return jsonify({'message': message, 'circulation': record.to_dict()})


@api.route('/circulation/borrowed', methods=['GET'])
@login_required
def borrowed_books():
    user_id = request.args.get('user_id', type=int) or g.identity.id
    if not g.identity.owns(user_id) and not g.identity.is_admin:
        raise ForbiddenError('You can only view your own borrowed books')
    return jsonify(get_engine().borrowed_books(user_id))


# --- Notifications ---

@api.route('/notifications/user/<int:user_id>', methods=['GET'])
@login_required
def user_notifications(user_id):
    if not g.identity.owns(user_id) and not g.identity.is_admin:
        raise ForbiddenError('You can only view your own notifications')
    notifications = NotificationSink(get_db()).list_for_user(user_id)
    return jsonify([n.to_dict() for n in notifications])


@api.route('/notifications/<int:notification_id>/read', methods=['PUT'])
@login_required
def mark_notification_read(notification_id):
    NotificationSink(get_db()).mark_read(notification_id, g.identity)
    return jsonify({'message': 'Notification marked as read'})


@api.route('/notifications/<int:notification_id>', methods=['DELETE'])
@login_required
def delete_notification(notification_id):
    NotificationSink(get_db()).delete(notification_id, g.identity)
    return jsonify({'message': 'Notification deleted successfully'})


# --- Dashboard ---

@api.route('/dashboard/stats', methods=['GET'])
@login_required
def dashboard_stats():
    return jsonify(library_stats(get_db(), g.identity.id))


# --- Maintenance commands ---

def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and the default admin."""
        setup_database()
        click.echo('Database initialized.')

    @app.cli.command('seed-books')
    def seed_books_command():
        """Add the sample catalogue."""
        count = seed_books(get_db())
        click.echo(f'{count} books added.')

    @app.cli.command('reset-catalogue')
    @click.confirmation_option(prompt='Delete all books and circulation records?')
    def reset_catalogue_command():
        """Delete all books and circulation records."""
        reset_catalogue(get_db())
        click.echo('Deleted all books and reset auto-increment counters.')

    @app.cli.command('reconcile-inventory')
    def reconcile_inventory_command():
        """Recompute available copies from open circulation records."""
        corrected = get_engine().reconcile_inventory()
        for book_id, old, new in corrected:
            click.echo(f'Book {book_id}: available_copies {old} -> {new}')
        click.echo(f'{len(corrected)} books corrected.')


if __name__ == '__main__':
    app = create_app()
    app.run(debug=app.config.get('DEBUG', False))
