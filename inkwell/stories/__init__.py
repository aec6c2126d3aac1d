from flask import Blueprint

from ..api_utils import register_json_errors

bp = Blueprint("stories", __name__, url_prefix="/api/stories")
register_json_errors(bp)

from . import routes  # noqa: E402,F401
