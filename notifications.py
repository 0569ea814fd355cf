import logging
from datetime import datetime

from database import format_timestamp
from errors import ForbiddenError, NotFoundError
from models import Notification

logger = logging.getLogger(__name__)


class NotificationSink:
    def __init__(self, conn, clock=None):
        self.conn = conn
        self.clock = clock or datetime.now

    def notify_user(self, user_id, title, message):
        cursor = self.conn.execute('''
            INSERT INTO notifications (user_id, title, message, created_at) VALUES (?, ?, ?, ?)
        ''', (user_id, title, message, format_timestamp(self.clock())))
        logger.info("Notification '%s' sent to user %s", title, user_id)
        return cursor.lastrowid

    def notify_admins(self, title, message):
        # One row per current admin; admins added later never see it
        admin_ids = [row['id'] for row in self.conn.execute(
            "SELECT id FROM users WHERE role = 'admin' ORDER BY id").fetchall()]
        ids = [self.notify_user(admin_id, title, message) for admin_id in admin_ids]
        logger.info("Notification '%s' broadcast to %d admins", title, len(ids))
        return ids

    def create(self, user_id, title, message):
        """Send to one user, or to every admin when ``user_id`` is None."""
        if user_id is None:
            return self.notify_admins(title, message)
        return [self.notify_user(user_id, title, message)]

    def get(self, notification_id):
        row = self.conn.execute('SELECT * FROM notifications WHERE id = ?', (notification_id,)).fetchone()
        return Notification.from_row(row) if row else None

    def list_for_user(self, user_id, limit=None):
        sql = 'SELECT * FROM notifications WHERE user_id = ? ORDER BY created_at DESC, id DESC'
        params = [user_id]
        if limit is not None:
            sql += ' LIMIT ?'
            params.append(limit)
        return [Notification.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def unread_count(self, user_id):
        return self.conn.execute(
            'SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0',
            (user_id,)).fetchone()[0]

    def _owned(self, notification_id, caller):
        notification = self.get(notification_id)
        if notification is None:
            raise NotFoundError('Notification not found')
        if notification.user_id != caller.id and not caller.is_admin:
            raise ForbiddenError('You can only manage your own notifications')
        return notification

    def mark_read(self, notification_id, caller):
        self._owned(notification_id, caller)
        self.conn.execute('UPDATE notifications SET is_read = 1 WHERE id = ?', (notification_id,))
        self.conn.commit()
        return self.get(notification_id)

    def delete(self, notification_id, caller):
        self._owned(notification_id, caller)
        self.conn.execute('DELETE FROM notifications WHERE id = ?', (notification_id,))
        self.conn.commit()
