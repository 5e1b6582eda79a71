"""
API routes.

- sync: Trigger a user's bet sync and read its last run
- settlement: Reconciliation control surface (recalculate / validate)
"""
