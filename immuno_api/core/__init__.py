"""Core Layer - errors, status vocabulary and the retry discipline.

Invariants:
    - No module in core/ imports from services/, api/, or infrastructure/
    - Nothing in core/ touches the store or the network directly

Design Decisions:
    - Retry lives in core: it only sequences an injected operation and an injected sleep
"""
