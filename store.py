"""
User Store: persistence for users and their predictions.

Two backends expose the same operations:

- ``SqlStore``: Flask-SQLAlchemy tables ``users`` and ``predictions``. The schema
  carries the uniqueness rules (one user per Google id, one prediction per
  user & match), and a losing concurrent insert adopts the winning row.
- ``FirestoreStore``: collections ``users`` and ``predictions`` in Firestore.
  Find-or-create and find-or-update run inside Firestore transactions.

Single-row lookups raise ``NotFound`` when nothing matches; every other
failure of the underlying service surfaces as ``StoreError``.
"""

import json
import logging
import uuid
from contextlib import contextmanager

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Prediction, User, db

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


class StoreError(Exception):
    """The User Store could not complete an operation."""


class NotFound(StoreError):
    """A single-row lookup matched no rows."""


class Conflict(StoreError):
    """An insert collided with a uniqueness rule."""


# --- SQL backend ---

class SqlStore:
    name = "sql"

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        db.init_app(app)
        with app.app_context():
            db.create_all()

    @contextmanager
    def _session(self, action):
        try:
            yield db.session
        except IntegrityError as e:
            db.session.rollback()
            raise Conflict(f"{action}: {e.orig}") from e
        except (SQLAlchemyError, OverflowError) as e:
            # sqlite3 raises OverflowError for ints wider than 64 bits
            db.session.rollback()
            raise StoreError(f"{action}: {e}") from e

    def ping(self):
        with self._session("ping") as session:
            session.execute(db.text("SELECT 1"))

    def get_user(self, user_id):
        with self._session("get user") as session:
            user = session.get(User, user_id)
        if user is None:
            raise NotFound(f"no user with id {user_id!r}")
        return user.to_dict()

    def find_user_by_provider_id(self, provider_id):
        with self._session("find user") as session:
            user = session.execute(db.select(User).filter_by(google_id=provider_id)).scalar_one_or_none()
        if user is None:
            raise NotFound(f"no user with google id {provider_id!r}")
        return user.to_dict()

    def create_user(self, provider_id, display_name):
        with self._session("create user") as session:
            user = User(google_id=provider_id, display_name=display_name)
            session.add(user)
            session.commit()
            return user.to_dict()

    def get_or_create_user(self, provider_id, display_name):
        """Returns ``(user, created)``."""
        try:
            return self.find_user_by_provider_id(provider_id), False
        except NotFound:
            pass
        try:
            return self.create_user(provider_id, display_name), True
        except Conflict:
            # Someone else created it between our lookup and insert.
            return self.find_user_by_provider_id(provider_id), False

    def list_predictions(self, user_id):
        with self._session("list predictions") as session:
            rows = session.execute(db.select(Prediction).filter_by(user_id=user_id)).scalars().all()
        return [p.to_dict() for p in rows]

    def find_prediction(self, user_id, match_id):
        with self._session("find prediction") as session:
            pred = session.execute(
                db.select(Prediction).filter_by(user_id=user_id, match_id=match_id)
            ).scalar_one_or_none()
        if pred is None:
            raise NotFound(f"no prediction for user {user_id!r} and match {match_id!r}")
        return pred.to_dict()

    def _insert_prediction(self, user_id, match_id, team1_score, team2_score):
        with self._session("insert prediction") as session:
            session.add(Prediction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                match_id=match_id,
                team1_score=team1_score,
                team2_score=team2_score,
            ))
            session.commit()

    def _update_scores(self, prediction_id, team1_score, team2_score):
        with self._session("update prediction") as session:
            pred = session.get(Prediction, prediction_id)
            if pred is None:
                raise NotFound(f"no prediction with id {prediction_id!r}")
            pred.team1_score = team1_score
            pred.team2_score = team2_score
            session.commit()

    def save_prediction(self, user_id, match_id, team1_score, team2_score):
        """Creates or updates the user's prediction for a match. Returns CREATED or UPDATED."""
        try:
            existing = self.find_prediction(user_id, match_id)
        except NotFound:
            try:
                self._insert_prediction(user_id, match_id, team1_score, team2_score)
                return CREATED
            except Conflict:
                existing = self.find_prediction(user_id, match_id)
        self._update_scores(existing["id"], team1_score, team2_score)
        return UPDATED


# --- Firestore backend ---

def _doc_dict(snapshot):
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


@firestore.transactional
def _get_or_create_user_txn(transaction, users, provider_id, display_name):
    query = users.where(filter=FieldFilter("google_id", "==", provider_id)).limit(1)
    for snapshot in transaction.get(query):
        return _doc_dict(snapshot), False
    ref = users.document()
    data = {"google_id": provider_id, "display_name": display_name}
    transaction.set(ref, data)
    return dict(data, id=ref.id), True


@firestore.transactional
def _save_prediction_txn(transaction, predictions, user_id, match_id, team1_score, team2_score):
    query = (
        predictions.where(filter=FieldFilter("user_id", "==", user_id))
        .where(filter=FieldFilter("match_id", "==", match_id))
        .limit(1)
    )
    for snapshot in transaction.get(query):
        transaction.update(snapshot.reference, {"team1_score": team1_score, "team2_score": team2_score})
        return UPDATED
    prediction_id = str(uuid.uuid4())
    transaction.set(predictions.document(prediction_id), {
        "id": prediction_id,
        "user_id": user_id,
        "match_id": match_id,
        "team1_score": team1_score,
        "team2_score": team2_score,
    })
    return CREATED


class FirestoreStore:
    name = "firestore"

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_key(cls, firebase_key_string):
        """Initializes the Firebase app from a service-account JSON string."""
        if not firebase_key_string:
            raise StoreError("FIREBASE_KEY is not set")
        try:
            cred = credentials.Certificate(json.loads(firebase_key_string))
            if not firebase_admin._apps:
                firebase_admin.initialize_app(cred)
            client = firestore.client()
        except (ValueError, google_exceptions.GoogleAPIError) as e:
            raise StoreError(f"could not initialize Firebase: {e}") from e
        logger.info("Firebase initialized successfully")
        return cls(client)

    @property
    def users(self):
        return self.client.collection("users")

    @property
    def predictions(self):
        return self.client.collection("predictions")

    @contextmanager
    def _call(self, action):
        try:
            yield
        except (google_exceptions.GoogleAPIError, ValueError) as e:
            # transactional() raises ValueError once its attempts run out
            raise StoreError(f"{action}: {e}") from e

    def ping(self):
        with self._call("ping"):
            list(self.users.limit(1).stream())

    def get_user(self, user_id):
        with self._call("get user"):
            snapshot = self.users.document(str(user_id)).get()
        if not snapshot.exists:
            raise NotFound(f"no user with id {user_id!r}")
        return _doc_dict(snapshot)

    def find_user_by_provider_id(self, provider_id):
        with self._call("find user"):
            docs = list(self.users.where(filter=FieldFilter("google_id", "==", provider_id)).limit(1).stream())
        if not docs:
            raise NotFound(f"no user with google id {provider_id!r}")
        return _doc_dict(docs[0])

    def get_or_create_user(self, provider_id, display_name):
        """Returns ``(user, created)``."""
        with self._call("get or create user"):
            return _get_or_create_user_txn(self.client.transaction(), self.users, provider_id, display_name)

    def list_predictions(self, user_id):
        with self._call("list predictions"):
            docs = self.predictions.where(filter=FieldFilter("user_id", "==", user_id)).stream()
            return [_doc_dict(doc) for doc in docs]

    def save_prediction(self, user_id, match_id, team1_score, team2_score):
        """Creates or updates the user's prediction for a match. Returns CREATED or UPDATED."""
        with self._call("save prediction"):
            return _save_prediction_txn(
                self.client.transaction(), self.predictions, user_id, match_id, team1_score, team2_score
            )


def init_store(app):
    """Builds the backend named by STORE_BACKEND."""
    backend = app.config.get("STORE_BACKEND", "sql")
    if backend == "firestore":
        return FirestoreStore.from_key(app.config.get("FIREBASE_KEY"))
    if backend == "sql":
        return SqlStore(app)
    raise StoreError(f"unknown STORE_BACKEND {backend!r}")
