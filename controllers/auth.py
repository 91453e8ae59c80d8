from flask import jsonify, request
from flask_login import LoginManager, UserMixin
from models.users_db import get_user, get_user_by_token

login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, user_id, email, full_name):
        self.id = user_id
        self.email = email
        self.full_name = full_name


def _from_row(row):
    return User(row["id"], row["email"], row["full_name"])


@login_manager.user_loader
def load_user(user_id):
    row = get_user(user_id)
    if not row:
        return None
    return _from_row(row)


@login_manager.request_loader
def load_user_from_request(req):
    # API callers authenticate with "Authorization: Bearer <token>"
    header = req.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    row = get_user_by_token(token.strip())
    if not row:
        return None
    return _from_row(row)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({
        "success": False,
        "message": "Authentication required.",
        "data": None,
        "error": "unauthorized",
        "path": request.path,
    }), 401
