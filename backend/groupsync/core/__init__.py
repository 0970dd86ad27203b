"""Core Layer: domain types, errors, events and pure decision logic.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or models/
    - Functions are deterministic given their inputs (randomness is injected)

Design Decisions:
    - Functional core separated from imperative shell: naming, group choice and
      update semantics are testable without a database
"""
