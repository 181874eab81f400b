"""Infrastructure Layer - document store client and cross-cutting concerns.

Invariants:
    - Infrastructure never imports from services/ or api/
    - StoreService maps every store failure to ConnectivityError (credentials: ConfigurationError)
    - FirestoreStore is the raw SDK boundary: it raises the SDK's own exceptions unchanged,
      so callers that talk to it directly wrap failures themselves

Design Decisions:
    - Resilient wrappers over raw clients (ADR: ExMA single responsibility)
"""
