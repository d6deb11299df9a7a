"""
Rate limiting package for the Commerce service.

Holds the Redis fixed-window limiter and the middleware that applies it to
``/api`` routes.
"""
