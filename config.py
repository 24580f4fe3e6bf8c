import os
from datetime import timedelta

from dotenv import load_dotenv

# Pick up a local .env when present; real environment variables win.
load_dotenv()


class Config:
    """Process configuration read from the environment."""

    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "a_very_secret_key")
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.environ.get("SESSION_LIFETIME_DAYS", "14")))

    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET")
    GOOGLE_CALLBACK_URL = os.environ.get("GOOGLE_CALLBACK_URL", "http://localhost:3000/auth/callback")

    FIREBASE_KEY = os.environ.get("FIREBASE_KEY")
    STORE_BACKEND = os.environ.get("STORE_BACKEND") or ("firestore" if FIREBASE_KEY else "sql")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///predictions.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    MATCHES_FILE = os.environ.get("MATCHES_FILE")
    PORT = int(os.environ.get("PORT", "3000"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
