"""
Bet Sync Service

Pulls bettor bet slips from the aggregator and feeds them through the
settlement engine.

Key components:
- AggregatorClient: HTTP client with retry and circuit breaker
- Orchestrator: Per-user sync runs and reporting
"""
