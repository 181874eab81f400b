"""Domain Types - fixed document paths and status vocabularies for lifecycle bookkeeping.

Invariants:
    - Status documents live at fixed (collection, document) paths, never generated
    - All valid status values encoded as Enums - no raw string matching
    - LifecycleState transitions only RUNNING -> SHUTTING_DOWN (terminal)

Design Decisions:
    - str Enums: serialize straight into store payloads and JSON responses
    - DocumentPath as NamedTuple: unpacks into (collection, document) for the store client
"""

from enum import Enum
from typing import NamedTuple


class DocumentPath(NamedTuple):
    """Address of a single document: collection id + document id."""
    collection: str
    document: str

    def __str__(self) -> str:
        return f"{self.collection}/{self.document}"


# ─── Status Documents ────────────────────────────────────────────

CONNECTION_TEST_DOC = DocumentPath("status", "connection_test")
HEALTH_CHECK_DOC = DocumentPath("status", "health_check")
API_STATUS_DOC = DocumentPath("status", "api_status")
API_CONFIG_DOC = DocumentPath("config", "api")


# ─── Enums ───────────────────────────────────────────────────────

class DocumentStatus(str, Enum):
    """Values written to the `status` field of status documents."""
    CONNECTED = "connected"
    HEALTHY = "healthy"
    ACTIVE = "active"
    STARTED = "started"
    STOPPED = "stopped"


class LifecycleState(str, Enum):
    """Process lifecycle - SHUTTING_DOWN is terminal."""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


API_VERSION = "1.0.0"
