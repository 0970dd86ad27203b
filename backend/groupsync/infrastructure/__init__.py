"""Infrastructure Layer: database sessions, notification delivery and logging.

Invariants:
    - Infrastructure never imports from services/
    - External calls map transport failures to GroupSyncError subclasses

Design Decisions:
    - Thin wrappers over raw clients (SQLAlchemy engine, httpx)
"""
