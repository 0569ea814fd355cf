"""User accounts: registration, login and admin management."""

import logging

from auth import check_password, hash_password
from database import transaction
from errors import AuthenticationError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from models import Role, User, check_text

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, conn):
        self.conn = conn

    def get(self, user_id):
        row = self.conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
        return User.from_row(row) if row else None

    def require(self, user_id):
        user = self.get(user_id)
        if user is None:
            raise NotFoundError('User not found')
        return user

    def get_by_username(self, username):
        row = self.conn.execute('SELECT * FROM users WHERE username = ?', (username,)).fetchone()
        return User.from_row(row) if row else None

    def get_by_email(self, email):
        row = self.conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        return User.from_row(row) if row else None

    def list_users(self):
        rows = self.conn.execute('SELECT * FROM users ORDER BY username').fetchall()
        return [User.from_row(row) for row in rows]

    def admin_count(self):
        return self.conn.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'").fetchone()[0]

    def register(self, username, email, password, role=None, caller=None):
        """Create an account.

        Only an admin caller may create another admin; any other request for
        the admin role quietly becomes a patron account.
        """
        if not username or not email or not password:
            raise ValidationError('Username, email, and password are required')
        check_text(username=username, email=email, password=password)
        role = role or Role.PATRON.value
        if role not in (Role.ADMIN.value, Role.PATRON.value):
            raise ValidationError("role must be 'admin' or 'patron'")
        if role == Role.ADMIN.value and not (caller and caller.is_admin):
            role = Role.PATRON.value

        with transaction(self.conn):
            if self.get_by_username(username):
                raise ConflictError('Username already exists')
            if self.get_by_email(email):
                raise ConflictError('Email already exists')
            cursor = self.conn.execute('''
                INSERT INTO users (username, email, password_hash, role) VALUES (?, ?, ?, ?)
            ''', (username, email, hash_password(password), role))
        logger.info("User %s '%s' registered as %s", cursor.lastrowid, username, role)
        return self.get(cursor.lastrowid)

    def authenticate(self, username, password):
        if not username or not password:
            raise ValidationError('Username and password are required')
        check_text(username=username, password=password)
        user = self.get_by_username(username)
        if user is None or not check_password(user.password_hash, password):
            raise AuthenticationError('Invalid credentials')
        return user

    def update(self, user_id, changes, caller):
        if not caller.owns(user_id) and not caller.is_admin:
            raise ForbiddenError('You can only update your own account')
        if changes.role is not None and not caller.is_admin:
            changes.role = None
        if changes.is_empty():
            raise ValidationError('No fields to update')

        with transaction(self.conn):
            user = self.require(user_id)
            if changes.username is not None and changes.username != user.username \
                    and self.get_by_username(changes.username):
                raise ConflictError('Username already exists')
            if changes.email is not None and changes.email != user.email \
                    and self.get_by_email(changes.email):
                raise ConflictError('Email already exists')
            if user.is_admin and changes.role == Role.PATRON.value and self.admin_count() <= 1:
                raise ConflictError('Cannot demote the last admin user')

            password_hash = hash_password(changes.password) if changes.password else None
            self.conn.execute('''
                UPDATE users SET
                    username = COALESCE(?, username),
                    email = COALESCE(?, email),
                    password_hash = COALESCE(?, password_hash),
                    role = COALESCE(?, role)
                WHERE id = ?
            ''', (changes.username, changes.email, password_hash, changes.role, user_id))
        logger.info('User %s updated by %s', user_id, caller.username)
        return self.get(user_id)

    def delete(self, user_id, caller):
        if not caller.is_admin:
            raise ForbiddenError('Admin access required')

        with transaction(self.conn):
            user = self.require(user_id)
            if user.is_admin and self.admin_count() <= 1:
                raise ConflictError('Cannot delete the last admin user')
            open_records = self.conn.execute('''
                SELECT COUNT(*) FROM circulation
                WHERE user_id = ? AND action IN ('reserve', 'borrow') AND returned = 0
            ''', (user_id,)).fetchone()[0]
            if open_records:
                raise ConflictError('Cannot delete a user with open reservations or loans')
            self.conn.execute('DELETE FROM users WHERE id = ?', (user_id,))
        logger.info('User %s deleted by %s', user_id, caller.username)
