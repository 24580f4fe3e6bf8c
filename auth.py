import logging
import secrets
from typing import NamedTuple
from urllib.parse import urlencode

import requests

from store import StoreError

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPE = "openid profile"

HTTP_TIMEOUT = 10


class AuthError(Exception):
    """The identity provider denied or failed the login."""


class Identity(NamedTuple):
    provider_id: str
    display_name: str


class GoogleVerifier:
    """OAuth2 authorization-code flow against Google."""

    def __init__(self, client_id, client_secret, callback_url):
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url

    @classmethod
    def from_config(cls, config):
        return cls(
            config.get("GOOGLE_CLIENT_ID"),
            config.get("GOOGLE_CLIENT_SECRET"),
            config.get("GOOGLE_CALLBACK_URL"),
        )

    def new_state(self):
        return secrets.token_urlsafe(24)

    def authorize_url(self, state):
        if not self.client_id:
            raise AuthError("Google client id is not configured")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": GOOGLE_SCOPE,
            "state": state,
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    def verify(self, args, expected_state):
        """Turns the callback query parameters into an Identity."""
        if args.get("error"):
            raise AuthError(f"provider returned error: {args.get('error')}")
        if not expected_state or args.get("state") != expected_state:
            raise AuthError("state mismatch")
        code = args.get("code")
        if not code:
            raise AuthError("missing authorization code")

        try:
            r = requests.post(GOOGLE_TOKEN_URL, data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.callback_url,
            }, timeout=HTTP_TIMEOUT)
            if r.status_code >= 400:
                # Don't echo the body, it may contain secrets.
                raise AuthError(f"token exchange failed (status={r.status_code})")
            token = r.json()
            access_token = token.get("access_token") if isinstance(token, dict) else None
            if not access_token:
                raise AuthError("token response has no access_token")

            r = requests.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=HTTP_TIMEOUT,
            )
            r.raise_for_status()
            profile = r.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthError(f"could not reach Google: {e}") from e

        if not isinstance(profile, dict):
            raise AuthError("invalid userinfo response")
        provider_id = profile.get("sub")
        if not provider_id:
            raise AuthError("profile has no subject id")
        return Identity(str(provider_id), profile.get("name") or "")


def complete_login(store, identity):
    """
    Maps a verified identity to a local user, creating one on first login.

    Returns the user record. Raises AuthError if the store fails.
    """
    try:
        user, created = store.get_or_create_user(identity.provider_id, identity.display_name)
    except StoreError as e:
        logger.error("Error fetching or creating user %s: %s", identity.provider_id, e)
        raise AuthError("could not load user") from e

    if created:
        logger.info("Created user %s for google id %s", user["id"], identity.provider_id)
    return user
