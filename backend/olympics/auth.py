from functools import wraps
from typing import Optional

from flask_login import current_user, login_required

from olympics.errors import Forbidden, Unauthorized
from olympics.models import Participant


def current_participant() -> Optional[Participant]:
    """Resolve the logged-in user to their participant profile, if any."""
    if not current_user.is_authenticated:
        raise Unauthorized('You must be logged in to perform this action')
    return current_user.participant


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        participant = current_user.participant
        if participant is None or not participant.is_admin:
            raise Forbidden('You must be an admin to perform this action')
        return view(*args, **kwargs)
    return wrapped
