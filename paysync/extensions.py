from flask import has_request_context
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

login_manager = LoginManager()
# API only: no login view to redirect to
login_manager.login_view = None


def _rate_limit_key() -> str:
    """Per account when signed in, so shared NATs don't throttle each other."""
    if has_request_context() and getattr(current_user, "is_authenticated", False):
        return f"account:{current_user.id}"
    return get_remote_address()


# Storage URI is set on app.config in create_app() before init_app
limiter = Limiter(key_func=_rate_limit_key)
