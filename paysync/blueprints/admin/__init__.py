from flask import Blueprint

bp = Blueprint("admin", __name__)

from paysync.models import ROLE_ADMIN
from paysync.services.policy import role_required

@bp.before_request
@role_required(ROLE_ADMIN)
def _require_admin():
    return None


# Import submodules so their routes register on the same bp
from . import accounts  # noqa: E402,F401
