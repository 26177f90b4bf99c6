from functools import wraps
from flask import abort, current_app, request
from flask_login import current_user

def admin_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if not current_user.is_admin:
            current_app.logger.warning(
                f"⚠️ Unauthorized admin access by {current_user.email} to {request.path}"
            )
            abort(403)
        return f(*args, **kwargs)
    return wrapped
