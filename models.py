from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Optional

from errors import ValidationError


class Role(str, Enum):
    ADMIN = 'admin'
    PATRON = 'patron'


class Action(str, Enum):
    RESERVE = 'reserve'
    BORROW = 'borrow'
    RETURN = 'return'


class CirculationState(str, Enum):
    RESERVED = 'RESERVED'
    BORROWED = 'BORROWED'
    RETURNED = 'RETURNED'


def _from_row(cls, row):
    return cls(**{f.name: row[f.name] for f in fields(cls)})


@dataclass
class User:
    id: int
    username: str
    email: str
    password_hash: str
    role: str
    created_at: Optional[str] = None

    from_row = classmethod(_from_row)

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    def to_dict(self):
        """Public view; the password hash never leaves the service."""
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'created_at': self.created_at,
        }


@dataclass
class Book:
    id: int
    title: str
    author: str
    isbn: str
    total_copies: int
    available_copies: int
    quantity: int
    shelf: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    cover_image: Optional[str] = None
    created_at: Optional[str] = None

    from_row = classmethod(_from_row)

    @property
    def held_copies(self):
        return self.total_copies - self.available_copies

    def to_dict(self):
        return asdict(self)


@dataclass
class CirculationRecord:
    id: int
    user_id: int
    book_id: int
    action: str
    action_date: str
    due_date: Optional[str]
    fine_amount: float
    returned: bool

    @classmethod
    def from_row(cls, row):
        record = _from_row(cls, row)
        record.returned = bool(record.returned)
        record.fine_amount = float(record.fine_amount or 0)
        return record

    @property
    def state(self):
        if self.returned or self.action == Action.RETURN.value:
            return CirculationState.RETURNED
        if self.action == Action.BORROW.value:
            return CirculationState.BORROWED
        return CirculationState.RESERVED

    @property
    def is_open(self):
        return self.state != CirculationState.RETURNED

    def to_dict(self):
        return asdict(self)


@dataclass
class Notification:
    id: int
    user_id: int
    title: str
    message: str
    is_read: bool
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        notification = _from_row(cls, row)
        notification.is_read = bool(notification.is_read)
        return notification

    def to_dict(self):
        return asdict(self)


def _optional(data, name, kind, strip=True):
    value = data.get(name)
    if value is None:
        return None
    if kind is int:
        if isinstance(value, bool):
            raise ValidationError(f'{name} must be an integer')
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{name} must be an integer')
    if not isinstance(value, str):
        raise ValidationError(f'{name} must be a string')
    return value.strip() if strip else value


def check_text(**values):
    for name, value in values.items():
        if not isinstance(value, str):
            raise ValidationError(f'{name} must be a string')


def text_fields(data, names, strip=True):
    """Pull optional string fields out of ``data``, rejecting other types."""
    return {name: _optional(data, name, str, strip) for name in names}


@dataclass
class BookUpdate:
    """Fields an admin may change on a book; ``None`` means leave as is."""
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    total_copies: Optional[int] = None
    quantity: Optional[int] = None
    shelf: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    published_year: Optional[int] = None
    publisher: Optional[str] = None
    cover_image: Optional[str] = None

    _INT_FIELDS = ('total_copies', 'quantity', 'published_year')

    @classmethod
    def from_payload(cls, data):
        if 'available_copies' in data:
            raise ValidationError('available_copies is managed by circulation; change total_copies instead')
        values = {}
        for f in fields(cls):
            kind = int if f.name in cls._INT_FIELDS else str
            values[f.name] = _optional(data, f.name, kind)
        update = cls(**values)
        if update.total_copies is not None and update.total_copies < 0:
            raise ValidationError('total_copies cannot be negative')
        for name in ('title', 'author', 'isbn'):
            if getattr(update, name) == '':
                raise ValidationError(f'{name} cannot be empty')
        return update

    def is_empty(self):
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class UserUpdate:
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_payload(cls, data):
        values = text_fields(data, ('username', 'email', 'role'))
        values['password'] = _optional(data, 'password', str, strip=False)
        update = cls(**values)
        if update.role is not None and update.role not in (Role.ADMIN.value, Role.PATRON.value):
            raise ValidationError("role must be 'admin' or 'patron'")
        for name in ('username', 'email', 'password'):
            if getattr(update, name) == '':
                raise ValidationError(f'{name} cannot be empty')
        return update

    def is_empty(self):
        return all(getattr(self, f.name) is None for f in fields(self))
