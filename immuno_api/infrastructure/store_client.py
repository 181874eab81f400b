"""Firestore Store Client - credential bundle, one-time app creation, async document IO.

Invariants:
    - StoreCredentials.validate() runs before any network call and names EVERY missing field
    - At most one Firebase app per name per process: an existing app is reused, never re-initialized
    - Write payloads never carry None values (dropped recursively before the SDK sees them)
    - close() deletes the Firebase app at most once

Design Decisions:
    - Thin wrapper over firestore_async.client(): services see DocumentStore, not the SDK
      (ADR: in-memory store in tests, no emulator needed)
    - None-dropping done here rather than per caller: partially-populated payloads are tolerated
      uniformly, as the SDK has no ignore-undefined setting
"""

import logging
from dataclasses import dataclass, fields

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.cloud.firestore import SERVER_TIMESTAMP

from immuno_api.core.domain_types import DocumentPath
from immuno_api.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_APP_NAME = "[DEFAULT]"


@dataclass(frozen=True)
class StoreCredentials:
    """Service-account credential bundle plus the store endpoint."""
    project_id: str | None
    client_email: str | None
    private_key: str | None
    database_url: str | None

    def missing_fields(self) -> list[str]:
        return [f.name for f in fields(self) if not getattr(self, f.name)]

    def validate(self) -> "StoreCredentials":
        """Raise ConfigurationError listing every missing field."""
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(missing, scope="Firebase credentials")
        return self

    def service_account_info(self) -> dict:
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "client_email": self.client_email,
            "private_key": self.private_key.replace("\\n", "\n"),
            "token_uri": GOOGLE_TOKEN_URI,
        }


def _drop_undefined(data: dict) -> dict:
    """Remove None values, descending into nested dicts."""
    return {
        key: _drop_undefined(value) if isinstance(value, dict) else value
        for key, value in data.items()
        if value is not None
    }


def get_or_create_app(
    creds: StoreCredentials, name: str = DEFAULT_APP_NAME,
) -> firebase_admin.App:
    """Return the existing Firebase app or initialize it from creds."""
    try:
        app = firebase_admin.get_app(name)
        logger.info("Firebase app already initialized, reusing it")
        return app
    except ValueError:
        pass
    app = firebase_admin.initialize_app(
        credentials.Certificate(creds.service_account_info()),
        {"databaseURL": creds.database_url, "projectId": creds.project_id},
        name=name,
    )
    logger.info(f"Firebase Admin SDK initialized for project {creds.project_id}")
    return app


class FirestoreStore:
    """DocumentStore backed by an async Firestore client."""

    server_timestamp = SERVER_TIMESTAMP

    def __init__(self, app: firebase_admin.App):
        self.app = app
        self.client = firestore_async.client(app)
        self._closed = False

    def _ref(self, path: DocumentPath):
        return self.client.collection(path.collection).document(path.document)

    async def get(self, path: DocumentPath) -> dict | None:
        snapshot = await self._ref(path).get()
        return snapshot.to_dict() if snapshot.exists else None

    async def set(
        self, path: DocumentPath, data: dict, *, merge: bool = False,
    ) -> None:
        await self._ref(path).set(_drop_undefined(data), merge=merge)

    async def update(self, path: DocumentPath, data: dict) -> None:
        await self._ref(path).update(_drop_undefined(data))

    async def list_collections(self) -> list[str]:
        return [col.id async for col in self.client.collections()]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        firebase_admin.delete_app(self.app)
        logger.info("Firebase app deleted")


def create_store_client(creds: StoreCredentials) -> FirestoreStore:
    """Validate creds, then build the process-wide store client."""
    creds.validate()
    return FirestoreStore(get_or_create_app(creds))
