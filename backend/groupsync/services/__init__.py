"""Services Layer: transaction scripts, change log and event dispatch.

Invariants:
    - One transaction per mutating operation; change records written inside it
    - Events handed to the dispatcher only after commit

Design Decisions:
    - Membership and registration rules live here, never in routes
"""
