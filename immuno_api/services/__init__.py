"""Services Layer - startup gate, status publishing, and the lifecycle state machine.

Invariants:
    - Services receive the DocumentStore by injection, never construct it
    - Only LifecycleCoordinator decides when the process exits

Design Decisions:
    - One concern per module (ADR: ExMA no god objects)
"""
