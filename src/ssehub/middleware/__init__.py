"""ASGI middleware (request ids, security headers)."""
