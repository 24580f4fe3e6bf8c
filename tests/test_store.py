import uuid
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from store import CREATED, UPDATED, Conflict, FirestoreStore, NotFound, StoreError


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


def test_unknown_user_is_not_found(store, ctx):
    with pytest.raises(NotFound):
        store.find_user_by_provider_id("g-unknown")
    with pytest.raises(NotFound):
        store.get_user(12345)


def test_not_found_is_a_store_error():
    assert issubclass(NotFound, StoreError)


def test_get_or_create_user_creates_once(store, ctx):
    user, created = store.get_or_create_user("g-42", "Jan")
    assert created is True
    assert user["google_id"] == "g-42"
    assert user["display_name"] == "Jan"

    again, created = store.get_or_create_user("g-42", "Jan")
    assert created is False
    assert again["id"] == user["id"]
    assert store.get_user(user["id"]) == user


def test_duplicate_google_id_is_a_conflict(store, ctx):
    store.create_user("g-1", "A")
    with pytest.raises(Conflict):
        store.create_user("g-1", "B")
    # the session is still usable after the rollback
    assert store.find_user_by_provider_id("g-1")["display_name"] == "A"


def test_get_or_create_adopts_row_created_concurrently(store, ctx, monkeypatch):
    store.create_user("g-7", "First")

    # Simulate losing the race: our lookup sees nothing, the insert then collides.
    real_find = store.find_user_by_provider_id
    calls = []

    def find_once_missing(provider_id):
        calls.append(provider_id)
        if len(calls) == 1:
            raise NotFound(provider_id)
        return real_find(provider_id)

    monkeypatch.setattr(store, "find_user_by_provider_id", find_once_missing)
    user, created = store.get_or_create_user("g-7", "Second")
    assert created is False
    assert user["display_name"] == "First"


def test_save_prediction_creates_then_updates(store, ctx):
    user, _ = store.get_or_create_user("g-42", "Jan")

    assert store.save_prediction(user["id"], 1, 2, 1) == CREATED
    first = store.find_prediction(user["id"], 1)
    assert (first["team1_score"], first["team2_score"]) == (2, 1)

    assert store.save_prediction(user["id"], 1, 3, 3) == UPDATED
    second = store.find_prediction(user["id"], 1)
    assert second["id"] == first["id"]
    assert (second["team1_score"], second["team2_score"]) == (3, 3)
    assert len(store.list_predictions(user["id"])) == 1


def test_predictions_are_per_user(store, ctx):
    a, _ = store.get_or_create_user("g-a", "A")
    b, _ = store.get_or_create_user("g-b", "B")
    store.save_prediction(a["id"], 1, 1, 0)
    store.save_prediction(a["id"], 2, 0, 0)
    store.save_prediction(b["id"], 1, 4, 4)

    assert sorted(p["match_id"] for p in store.list_predictions(a["id"])) == [1, 2]
    assert [p["team1_score"] for p in store.list_predictions(b["id"])] == [4]


def test_ping(store, ctx):
    store.ping()


# --- Firestore backend, against a mocked client ---

def test_firestore_get_user_missing_raises_not_found():
    client = MagicMock()
    client.collection.return_value.document.return_value.get.return_value.exists = False

    with pytest.raises(NotFound):
        FirestoreStore(client).get_user("abc")


def test_firestore_get_user_returns_document_with_id():
    client = MagicMock()
    snapshot = client.collection.return_value.document.return_value.get.return_value
    snapshot.exists = True
    snapshot.id = "abc"
    snapshot.to_dict.return_value = {"google_id": "g-42", "display_name": "Jan"}

    user = FirestoreStore(client).get_user("abc")
    assert user == {"id": "abc", "google_id": "g-42", "display_name": "Jan"}
    client.collection.assert_called_with("users")


def test_firestore_empty_query_is_not_found():
    client = MagicMock()
    client.collection.return_value.where.return_value.limit.return_value.stream.return_value = iter([])

    with pytest.raises(NotFound):
        FirestoreStore(client).find_user_by_provider_id("g-unknown")


def test_firestore_service_errors_become_store_errors():
    client = MagicMock()
    client.collection.return_value.document.return_value.get.side_effect = \
        google_exceptions.ServiceUnavailable("firestore is down")

    with pytest.raises(StoreError) as excinfo:
        FirestoreStore(client).get_user("abc")
    assert not isinstance(excinfo.value, NotFound)


def test_firestore_from_key_requires_a_key():
    with pytest.raises(StoreError):
        FirestoreStore.from_key(None)


def test_out_of_range_integer_is_a_store_error(store, ctx):
    user, _ = store.get_or_create_user("g-42", "Jan")
    with pytest.raises(StoreError):
        store.save_prediction(user["id"], 1, 10**20, 1)
    assert store.list_predictions(user["id"]) == []


def _firestore_client(query_results=()):
    """A mocked Firestore client whose transactional query returns `query_results`."""
    client = MagicMock()
    transaction = client.transaction.return_value
    transaction._max_attempts = 1
    transaction._read_only = False
    transaction.get.return_value = iter(query_results)
    return client, transaction


def _snapshot(doc_id, data):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.to_dict.return_value = dict(data)
    return snapshot


def test_firestore_get_or_create_user_creates_when_missing():
    client, transaction = _firestore_client()
    users = client.collection.return_value
    users.document.return_value.id = "new-user"

    user, created = FirestoreStore(client).get_or_create_user("g-42", "Jan")

    assert created is True
    assert user == {"id": "new-user", "google_id": "g-42", "display_name": "Jan"}
    transaction.set.assert_called_once_with(
        users.document.return_value, {"google_id": "g-42", "display_name": "Jan"}
    )
    transaction._commit.assert_called_once()


def test_firestore_get_or_create_user_reuses_existing():
    existing = _snapshot("u1", {"google_id": "g-42", "display_name": "Jan"})
    client, transaction = _firestore_client([existing])

    user, created = FirestoreStore(client).get_or_create_user("g-42", "Someone else")

    assert created is False
    assert user == {"id": "u1", "google_id": "g-42", "display_name": "Jan"}
    transaction.set.assert_not_called()


def test_firestore_save_prediction_creates_when_missing():
    client, transaction = _firestore_client()
    predictions = client.collection.return_value

    outcome = FirestoreStore(client).save_prediction("u1", 1, 2, 1)

    assert outcome == CREATED
    transaction.set.assert_called_once()
    ref, data = transaction.set.call_args.args
    assert ref is predictions.document.return_value
    uuid.UUID(data["id"])
    predictions.document.assert_called_with(data["id"])
    assert {k: v for k, v in data.items() if k != "id"} == {
        "user_id": "u1", "match_id": 1, "team1_score": 2, "team2_score": 1,
    }
    transaction.update.assert_not_called()


def test_firestore_save_prediction_updates_scores_in_place():
    existing = _snapshot("p1", {"user_id": "u1", "match_id": 1, "team1_score": 2, "team2_score": 1})
    client, transaction = _firestore_client([existing])

    outcome = FirestoreStore(client).save_prediction("u1", 1, 3, 3)

    assert outcome == UPDATED
    transaction.update.assert_called_once_with(existing.reference, {"team1_score": 3, "team2_score": 3})
    transaction.set.assert_not_called()


def test_firestore_exhausted_transaction_is_a_store_error():
    client, transaction = _firestore_client()
    transaction._commit.side_effect = google_exceptions.Aborted("contention")

    with pytest.raises(StoreError):
        FirestoreStore(client).save_prediction("u1", 1, 2, 1)
    transaction._rollback.assert_called()


def test_firestore_list_predictions():
    client = MagicMock()
    client.collection.return_value.where.return_value.stream.return_value = iter([
        _snapshot("p1", {"user_id": "u1", "match_id": 1, "team1_score": 2, "team2_score": 1}),
        _snapshot("p2", {"user_id": "u1", "match_id": 2, "team1_score": 0, "team2_score": 0}),
    ])

    preds = FirestoreStore(client).list_predictions("u1")

    assert [p["id"] for p in preds] == ["p1", "p2"]
    assert preds[0]["team1_score"] == 2
    client.collection.assert_called_with("predictions")
