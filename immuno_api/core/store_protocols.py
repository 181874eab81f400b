"""Boundary Protocols - the document store contract consumed by services and routes.

Invariants:
    - Services depend on DocumentStore, never on the Firestore SDK
    - Paths are always DocumentPath (collection, document) pairs
    - server_timestamp is an opaque sentinel resolved by the store at write time

Design Decisions:
    - Protocol over ABC: structural subtyping, the in-memory test store needs no inheritance (ADR: ExMA anti-pattern)
    - Async in Protocol: every implementation does network IO
"""

from typing import Any, Protocol

from immuno_api.core.domain_types import DocumentPath


class DocumentStore(Protocol):
    """Key-document read/write/list target - implemented by infrastructure."""
    server_timestamp: Any

    async def get(self, path: DocumentPath) -> dict | None: ...
    async def set(
        self, path: DocumentPath, data: dict, *, merge: bool = False,
    ) -> None: ...
    async def update(self, path: DocumentPath, data: dict) -> None: ...
    async def list_collections(self) -> list[str]: ...
    async def close(self) -> None: ...
