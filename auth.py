from dataclasses import dataclass
from datetime import datetime, timezone

from jose import JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from models import Role


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    def owns(self, user_id):
        return self.id == user_id


def hash_password(password):
    return generate_password_hash(password)


def check_password(password_hash, password):
    return check_password_hash(password_hash, password)


def issue_token(user, secret_key, algorithm='HS256', lifetime=None, now=None):
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        'sub': str(user.id),
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'iat': int(issued_at.timestamp()),
    }
    if lifetime is not None:
        claims['exp'] = int((issued_at + lifetime).timestamp())
    return jwt.encode(claims, secret_key, algorithm=algorithm)


def verify_token(token, secret_key, algorithm='HS256'):
    """Return the Identity inside a valid token, or None.

    Signature, expiry and the presence of every identity claim are checked.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
    try:
        return Identity(
            id=int(claims['id']),
            username=claims['username'],
            email=claims['email'],
            role=claims['role'],
        )
    except (KeyError, TypeError, ValueError):
        return None


def bearer_token(header_value):
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()
