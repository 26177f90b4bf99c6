from flask import current_app
from ..extensions import db
from ..security.models import SystemSetting

def get_setting(key, default=None):
    s = SystemSetting.query.filter_by(key=key).first()
    return s.value if s else default

def set_setting(key, value):
    s = SystemSetting.query.filter_by(key=key).first()
    if s:
        s.value = str(value)
    else:
        s = SystemSetting(key=key, value=str(value))
        db.session.add(s)
    db.session.commit()

def int_setting(key):
    """Integer tunable: SystemSetting row wins over app config."""
    fallback = current_app.config[key]
    raw = get_setting(key)
    if raw is None:
        return int(fallback)
    try:
        return int(raw)
    except ValueError:
        current_app.logger.warning(f"⚠️ Ignoring non-integer setting {key}={raw!r}, using {fallback}")
        return int(fallback)
