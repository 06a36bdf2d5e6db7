from flask import Blueprint

lotes_bp = Blueprint("lotes", __name__, url_prefix="/api")

from lotemap.lotes import routes  # noqa: E402,F401
