"""
Trading bounded context, domain layer.

- Signals, trades and portfolios with their lifecycles
- Risk evaluation and position sizing
- Ports for stores, venue, price snapshots and time
"""
