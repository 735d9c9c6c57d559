from flask import Blueprint

bp = Blueprint("story", __name__, url_prefix="/api/story")

from . import routes  # noqa: E402,F401
