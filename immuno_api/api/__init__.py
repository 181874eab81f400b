"""API Layer - FastAPI routes, middleware and error handlers.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - All endpoints return structured JSON responses
    - Store error details never reach an HTTP response

Design Decisions:
    - Thin routes; the store handle comes from app.state (ADR: injected by the composition root)
"""
