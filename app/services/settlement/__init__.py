"""
Bet settlement engine.

Key components:
- normalizer: Canonical status/side/bet-type mapping and leg validation
- parlay_grouper: Slip to legs, shared parlay_id, primary-leg designation
- dedup_upserter: Idempotent upsert keyed on (user_id, external_bet_id)
- profit_calculator: Settlement rules as a fold over leg outcomes
- reconciler: Paged recalculation and read-only validation of stored profit
"""
