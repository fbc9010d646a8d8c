import hmac
from functools import wraps

from flask import jsonify
from flask_login import LoginManager, UserMixin, current_user

from services.config import cfg

login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, username, role):
        self.id = username
        self.username = username
        self.role = role

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.request_loader
def load_user_from_request(req):
    """
    Back-office calls authenticate with `Authorization: Bearer <ADMIN_API_TOKEN>`.
    Issuing that token is someone else's job; we only check it.
    """
    expected = cfg("ADMIN_API_TOKEN")
    header = req.headers.get("Authorization", "")
    if not expected or not header.startswith("Bearer "):
        return None
    if hmac.compare_digest(header[len("Bearer "):].strip(), expected):
        return User("admin", "admin")
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "authentication required"}), 401


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            return jsonify({"error": "admin only"}), 403
        return f(*args, **kwargs)
    return wrapper
