"""
Shared module package.

Cross-cutting concerns:
- Error handling and mapping
- Security middleware and rate limiting
- Logging configuration
- Bounded waits on blocking calls
"""
