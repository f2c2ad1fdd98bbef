"""
Application layer for the trading bounded context.

Use cases coordinate domain entities and ports to fulfill
business operations, and the control loop drives them on a schedule.
"""
