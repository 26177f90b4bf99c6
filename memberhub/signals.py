from blinker import Namespace

_signals = Namespace()

# sender: the Flask app; kwargs: user_id
user_state_changed = _signals.signal("user-state-changed")
# sender: the Flask app; kwargs: item_id
content_changed = _signals.signal("content-changed")
