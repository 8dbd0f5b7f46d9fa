from functools import wraps

import jwt
from flask import g, request

from .config import JWT_ALGO, JWT_SECRET
from .errors import AppErr


def read_token(token):
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.PyJWTError as e:
        raise AppErr("Invalid or expired token", statuscode=401, details=str(e))


def get_auth_user():
    auth = request.headers.get('Authorization', '')
    if not auth.startswith('Bearer '):
        return None
    token = auth.split(' ', 1)[1].strip()
    try:
        data = read_token(token)
    except AppErr:
        return None
    if not data.get('sub'):
        return None
    user = {
        'id': str(data['sub']),
        'is_admin': int(data.get('is_admin', 0)),
    }
    g.user = user
    return user


def require_admin(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        user = get_auth_user()
        if not user:
            raise AppErr("Unauthorized", statuscode=401)
        if user['is_admin'] != 1:
            raise AppErr("Forbidden", statuscode=403)
        return f(*args, **kwargs)
    return wrapper


__all__ = ['read_token', 'get_auth_user', 'require_admin']
