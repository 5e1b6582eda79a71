"""
Services module for bet sync and settlement business logic.

This module organizes services into:
- settlement: Normalization, parlay grouping, idempotent upsert, profit rules, reconciliation
- sync: Aggregator client and the per-user sync orchestrator
"""
