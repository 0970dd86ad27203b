"""Database Layer: SQLAlchemy declarative Base shared by every ORM model.

Invariants:
    - Engine and sessions live in infrastructure/database.py (initialized via init_db)
"""
