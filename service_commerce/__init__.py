"""
Commerce Service package for the Commerce Access Service.

The service exposes signup/login, profile management, catalog browsing and
order placement over a PostgreSQL store with a Redis read-through cache.

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.cache: Best-effort Redis cache with key-index invalidation.
- app.auth: Password hashing, token validation and request authentication.
- app.orders: Order placement engine.
- app.catalog / app.accounts: Cached read paths and profile writes.
- app.persistence: asyncpg-backed store.
- app.ratelimit: Fixed-window request limiter.
"""
