"""
Persistence package for the Commerce service (PostgreSQL via asyncpg).
"""
