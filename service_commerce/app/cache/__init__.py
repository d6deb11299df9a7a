"""
Caching package for the Commerce service.

Holds the Redis-backed cache used for read-through lookups, key-index
invalidation of list pages, and the token revocation blacklist.
"""
