"""
Interfaces layer package.

Contains FastAPI routers, Pydantic request/response schemas,
and input validation. No business logic belongs here.
"""
