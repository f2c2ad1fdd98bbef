"""
LiveTrader: signal-driven live trading core.

Application package root. A modular monolith using hexagonal
architecture (ports & adapters).

Bounded contexts:
    - trading: Signal intake, risk gating, order execution,
      portfolio reconciliation and the live trading control loop.

Layers:
    - domain: Pure business logic, entities, ports (ABCs), errors.
    - application: Use cases, DTOs, orchestration.
    - infrastructure: Adapters (SQL stores, paper venue, price feeds).
    - interfaces: FastAPI routers, Pydantic schemas.
    - shared: Cross-cutting concerns (errors, security, logging, timeouts).
"""
