from flask import Blueprint

progress_bp = Blueprint(
    "progress",
    __name__,
    url_prefix="/me",
)

from . import routes
