"""Binds the signed session cookie to a user record, once per request."""

import logging

from flask import current_app, g, session

from store import StoreError

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"
SESSION_STATE_KEY = "oauth_state"


def load_current_user():
    """before_request hook: sets g.user to the logged-in user, or None."""
    g.user = None
    user_id = session.get(SESSION_USER_KEY)
    if user_id is None:
        return
    try:
        g.user = current_app.extensions["store"].get_user(user_id)
    except StoreError as e:
        logger.error("Error fetching user by id %s: %s", user_id, e)


def login_session(user):
    session.clear()
    session.permanent = True
    session[SESSION_USER_KEY] = user["id"]
    g.user = user


def logout_session():
    session.clear()
    g.user = None


def is_authenticated():
    return g.get("user") is not None
