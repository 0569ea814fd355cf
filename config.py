import logging
import os
from datetime import timedelta
from logging.handlers import RotatingFileHandler

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s [in %(pathname)s:%(lineno)d]'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # sqlite file holding users, books, circulation and notifications
    DATABASE = os.environ.get('DATABASE_PATH') or 'library.db'

    # Bearer tokens
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    TOKEN_LIFETIME = timedelta(hours=24)

    # Created at startup when the database has no admin
    DEFAULT_ADMIN_USERNAME = os.environ.get('DEFAULT_ADMIN_USERNAME') or 'admin'
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL') or 'admin@library.local'
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD') or 'admin'

    # Circulation
    FINE_PER_DAY = float(os.environ.get('FINE_PER_DAY') or 1.00)
    LOAN_PERIOD_DAYS = int(os.environ.get('LOAN_PERIOD_DAYS') or 14)

    # Cover uploads
    BOOK_COVER_UPLOAD_FOLDER = os.environ.get('BOOK_COVER_UPLOAD_FOLDER') or 'static/book_covers'
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif'}
    COVER_THUMBNAIL_SIZE = (400, 400)
    MAX_CONTENT_LENGTH = 4 * 1024 * 1024

    # Callable returning the current time; None means datetime.now
    CLOCK = None

    LOG_DIR = os.environ.get('LOG_DIR') or 'logs'

    @classmethod
    def init_app(cls, app):
        pass


class DevelopmentConfig(Config):
    DEBUG = True

    @classmethod
    def init_app(cls, app):
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


class ProductionConfig(Config):
    DEBUG = False

    @classmethod
    def init_app(cls, app):
        os.makedirs(cls.LOG_DIR, exist_ok=True)
        handler = RotatingFileHandler(os.path.join(cls.LOG_DIR, 'library.log'),
                                      maxBytes=10240, backupCount=10)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(logging.INFO)

        for logger in (app.logger, logging.getLogger()):
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)
        app.logger.info('Library API startup')


class TestingConfig(Config):
    TESTING = True
    DATABASE = 'test_library.db'
    JWT_SECRET_KEY = 'testing-secret'
    DEFAULT_ADMIN_PASSWORD = 'admin-pass'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
