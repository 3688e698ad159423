"""Read-only Firestore/Firebase Auth bulk readers.

Every reader returns a FetchResult instead of raising, so callers can decide
whether a missing dataset is fatal (CLI report) or tolerable (LLM tools).
"""
from __future__ import annotations
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List
import firebase_admin
from firebase_admin import auth, credentials, exceptions as fb_exceptions, firestore
from google.api_core import exceptions as gexc
from google.auth import exceptions as gauth_exc

from config import InitError, Settings
from schemas import FetchResult

logger = logging.getLogger(__name__)

APP_NAME = "sales-analyst"

_PERMISSION_HINT = (
    "Firestore permission denied. The service account used by the server cannot read this data. "
    "Grant the 'Cloud Datastore User' role to the service account in Google Cloud IAM."
)
_NOT_FOUND_HINT = (
    "Firestore query failed (NOT_FOUND). The Firestore database has probably not been created "
    "or is not in the expected location for this project."
)


def _plain(value: Any) -> Any:
    """Firestore timestamps -> ISO strings, recursively."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def document_to_record(doc: Any) -> Dict[str, Any]:
    data = _plain(doc.to_dict() or {})
    data["id"] = doc.id
    return data


def _explain(dataset: str, exc: Exception) -> str:
    if isinstance(exc, gexc.PermissionDenied):
        return _PERMISSION_HINT
    if isinstance(exc, gexc.NotFound):
        return _NOT_FOUND_HINT
    if isinstance(exc, gexc.FailedPrecondition):
        return (f"Firestore query for '{dataset}' failed due to a missing index. "
                "The server logs contain a link to create it in the Firebase Console.")
    return f"Failed to get {dataset}: {exc}"


class FirestoreStore:
    """Bulk readers over the company's Firestore collections."""

    def __init__(self, db: Any, auth_client: Any = None):
        self._db = db
        self._auth = auth_client

    def _read(self, dataset: str, load: Callable[[], List[Dict[str, Any]]]) -> FetchResult:
        try:
            records = load()
        except (gexc.GoogleAPIError, gauth_exc.GoogleAuthError) as exc:
            logger.error("Reading %s failed: %s", dataset, exc)
            return FetchResult.failed(_explain(dataset, exc))
        logger.debug("Read %d %s", len(records), dataset)
        return FetchResult.succeeded(records)

    def _collection(self, name: str, order_by: str | None = None) -> List[Dict[str, Any]]:
        query = self._db.collection(name)
        if order_by:
            query = query.order_by(order_by, direction=firestore.Query.DESCENDING)
        return [document_to_record(doc) for doc in query.stream()]

    def fetch_services(self) -> FetchResult:
        return self._read("services", lambda: self._collection("services"))

    def fetch_inventory(self) -> FetchResult:
        return self._read("products", lambda: self._collection("products"))

    def fetch_tasks(self) -> FetchResult:
        return self._read("tasks", lambda: self._collection("tasks"))

    def fetch_attendance(self) -> FetchResult:
        return self._read("attendance records", lambda: self._collection("attendance", order_by="clockInTime"))

    def fetch_customers(self) -> FetchResult:
        return self._read("customers", lambda: self._collection("customers", order_by="createdAt"))

    def fetch_transactions(self) -> FetchResult:
        return self._read("invoices", lambda: self._collection("invoices", order_by="date"))

    def fetch_personnel(self) -> FetchResult:
        """Auth accounts joined with their `users` profile documents (one profile read, no N+1)."""
        if self._auth is None:
            return FetchResult.failed("Firebase Auth is not configured for this store.")

        def load() -> List[Dict[str, Any]]:
            profiles = {doc.id: _plain(doc.to_dict() or {}) for doc in self._db.collection("users").stream()}
            combined = []
            for user in self._auth.list_users().iterate_all():
                profile = profiles.get(user.uid)
                meta = user.user_metadata
                combined.append({
                    "uid": user.uid,
                    "email": user.email,
                    "emailVerified": bool(user.email_verified),
                    "disabled": bool(user.disabled),
                    "profileStatus": (profile or {}).get("status"),
                    "createdAt": _millis_to_iso(getattr(meta, "creation_timestamp", None)),
                    "lastSignInAt": _millis_to_iso(getattr(meta, "last_sign_in_timestamp", None)),
                    "profile": profile,
                })
            return combined

        try:
            return self._read("users", load)
        except fb_exceptions.FirebaseError as exc:
            logger.error("Listing Firebase Auth users failed: %s", exc)
            return FetchResult.failed(f"Failed to fetch users: {exc}")


def _millis_to_iso(millis: int | None) -> str | None:
    if not millis:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def connect_store(settings: Settings) -> FirestoreStore | InitError:
    """Create the store from FIREBASE_SERVICE_ACCOUNT_KEY, or explain why it cannot be created."""
    raw = settings.service_account_key
    if not raw or not raw.strip():
        return InitError(
            service="firestore",
            message="FIREBASE_SERVICE_ACCOUNT_KEY environment variable is not set. "
                    "Set it to the service account JSON and restart.",
        )
    try:
        account = json.loads(raw)
    except json.JSONDecodeError as exc:
        return InitError(
            service="firestore",
            message=f"FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON: {exc.msg}. "
                    "It should be the complete service account object.",
        )
    try:
        try:
            app = firebase_admin.get_app(APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(credentials.Certificate(account), name=APP_NAME)
        db = firestore.client(app)
    except (ValueError, fb_exceptions.FirebaseError, gexc.GoogleAPIError) as exc:
        logger.error("Firebase Admin SDK initialisation failed: %s", exc)
        return InitError(service="firestore", message=f"Firebase Admin SDK initialization failed: {exc}")
    logger.info("Firebase Admin SDK initialised")
    return FirestoreStore(db, auth.Client(app))


class UnavailableStore:
    """Stand-in used when connect_store failed: every reader reports the initialisation error."""

    def __init__(self, error: InitError):
        self.error = error

    def _failed(self) -> FetchResult:
        return FetchResult.failed(self.error.message)

    def fetch_services(self) -> FetchResult:
        return self._failed()

    def fetch_personnel(self) -> FetchResult:
        return self._failed()

    def fetch_inventory(self) -> FetchResult:
        return self._failed()

    def fetch_tasks(self) -> FetchResult:
        return self._failed()

    def fetch_attendance(self) -> FetchResult:
        return self._failed()

    def fetch_customers(self) -> FetchResult:
        return self._failed()

    def fetch_transactions(self) -> FetchResult:
        return self._failed()
