"""
PostgreSQL persistence layer for the Commerce service.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shared.errors import ConflictError, InfrastructureError
from shared.logging import get_logger

# asyncpg.DataError (bad parameter values) is an InterfaceError, not a PostgresError.
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

IDENTITY_COLUMNS = "id, username, email, created_at, updated_at, last_login"
PROFILE_FIELDS = ("first_name", "last_name", "phone", "bio", "avatar_url")


def to_record(row: Any) -> Optional[Dict[str, Any]]:
    """Convert an asyncpg record into a JSON-native dict."""
    if row is None:
        return None
    record = {}
    for key, value in dict(row).items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        record[key] = value
    return record


class PostgreSQLOrderWriter:
    """Order writes bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert_order(self, user_id: int, total_amount: Decimal, status: str = "pending") -> int:
        return await self.conn.fetchval(
            "INSERT INTO orders (user_id, total_amount, status) VALUES ($1, $2, $3) RETURNING id",
            user_id, total_amount, status
        )

    async def insert_order_item(self, order_id: int, product_id: int, quantity: int,
                                unit_price: Decimal, total_price: Decimal) -> int:
        return await self.conn.fetchval(
            """
            INSERT INTO order_items (order_id, product_id, quantity, unit_price, total_price)
            VALUES ($1, $2, $3, $4, $5) RETURNING id
            """,
            order_id, product_id, quantity, unit_price, total_price
        )

    async def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """Conditional decrement; False when stock would go negative."""
        result = await self.conn.execute(
            """
            UPDATE products SET stock_quantity = stock_quantity - $1
            WHERE id = $2 AND stock_quantity >= $1
            """,
            quantity, product_id
        )
        return result == "UPDATE 1"


class PostgreSQLPersistence:
    """PostgreSQL persistence layer for users, profiles, products and orders."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 20, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("commerce.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )

            # Create tables if they don't exist
            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except DRIVER_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise InfrastructureError("PostgreSQL unavailable", details={"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def health_check(self) -> bool:
        """Run a trivial query."""
        try:
            async with self._connection("health_check") as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False

    @asynccontextmanager
    async def _connection(self, operation: str):
        """Acquire a pooled connection, normalizing driver failures."""
        if self.pool is None:
            raise InfrastructureError("PostgreSQL persistence not started", details={"operation": operation})
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except DRIVER_ERRORS as e:
            self.logger.error("Database operation failed", operation=operation, error=str(e))
            raise InfrastructureError("Database operation failed",
                                      details={"operation": operation, "error": str(e)}) from e

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                DO $$ BEGIN
                    CREATE TYPE order_status AS ENUM
                        ('pending', 'processing', 'shipped', 'delivered', 'cancelled');
                EXCEPTION
                    WHEN duplicate_object THEN null;
                END $$;
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username VARCHAR(50) UNIQUE NOT NULL,
                    email VARCHAR(100) UNIQUE NOT NULL,
                    password_hash VARCHAR(255) NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    last_login TIMESTAMP WITH TIME ZONE,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS user_profiles (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                    first_name VARCHAR(50),
                    last_name VARCHAR(50),
                    phone VARCHAR(20),
                    bio TEXT,
                    avatar_url VARCHAR(255),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id SERIAL PRIMARY KEY,
                    name VARCHAR(100) NOT NULL,
                    description TEXT,
                    price DECIMAL(10, 2) NOT NULL,
                    category VARCHAR(50),
                    image_url VARCHAR(255),
                    stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK (stock_quantity >= 0),
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS orders (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    total_amount DECIMAL(10, 2) NOT NULL,
                    status order_status NOT NULL DEFAULT 'pending',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS order_items (
                    id SERIAL PRIMARY KEY,
                    order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
                    quantity INTEGER NOT NULL,
                    unit_price DECIMAL(10, 2) NOT NULL,
                    total_price DECIMAL(10, 2) NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            # Create indexes
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_products_category ON products(category);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_products_created_at ON products(created_at);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);
            """)

    # Users

    async def create_user(self, username: str, email: str, password_hash: str) -> Dict[str, Any]:
        """Insert a user and return its identity projection."""
        async with self._connection("create_user") as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (username, email, password_hash) VALUES ($1, $2, $3)
                    RETURNING {IDENTITY_COLUMNS}
                    """,
                    username, email, password_hash
                )
            except asyncpg.UniqueViolationError as e:
                raise ConflictError("User with this email or username already exists") from e

        self.logger.info("User created", user_id=row["id"])
        return to_record(row)

    async def get_user_identity(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Identity projection of an active user. Never includes the password hash."""
        async with self._connection("get_user_identity") as conn:
            row = await conn.fetchrow(
                f"SELECT {IDENTITY_COLUMNS} FROM users WHERE id = $1 AND is_active",
                user_id
            )
        return to_record(row)

    async def get_user_credentials(self, email: str) -> Optional[Dict[str, Any]]:
        async with self._connection("get_user_credentials") as conn:
            row = await conn.fetchrow(
                f"SELECT {IDENTITY_COLUMNS}, password_hash, is_active FROM users WHERE email = $1",
                email
            )
        return to_record(row)

    async def get_password_hash(self, user_id: int) -> Optional[str]:
        async with self._connection("get_password_hash") as conn:
            return await conn.fetchval("SELECT password_hash FROM users WHERE id = $1", user_id)

    async def update_password(self, user_id: int, password_hash: str) -> bool:
        async with self._connection("update_password") as conn:
            result = await conn.execute(
                "UPDATE users SET password_hash = $1, updated_at = NOW() WHERE id = $2",
                password_hash, user_id
            )
        return result == "UPDATE 1"

    async def record_login(self, user_id: int) -> None:
        async with self._connection("record_login") as conn:
            await conn.execute("UPDATE users SET last_login = NOW() WHERE id = $1", user_id)

    # Profiles

    async def get_profile(self, user_id: int) -> Optional[Dict[str, Any]]:
        """User identity joined with the optional profile row."""
        async with self._connection("get_profile") as conn:
            row = await conn.fetchrow(
                """
                SELECT u.id, u.username, u.email, u.created_at, u.updated_at, u.last_login,
                       p.first_name, p.last_name, p.phone, p.bio, p.avatar_url
                FROM users u
                LEFT JOIN user_profiles p ON u.id = p.user_id
                WHERE u.id = $1
                """,
                user_id
            )
        return to_record(row)

    async def upsert_profile(self, user_id: int, fields: Dict[str, Any]) -> None:
        """Create the profile on first write, replace its fields afterwards."""
        values = [fields.get(name) for name in PROFILE_FIELDS]
        async with self._connection("upsert_profile") as conn:
            await conn.execute(
                """
                INSERT INTO user_profiles (user_id, first_name, last_name, phone, bio, avatar_url)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id) DO UPDATE SET
                    first_name = EXCLUDED.first_name,
                    last_name = EXCLUDED.last_name,
                    phone = EXCLUDED.phone,
                    bio = EXCLUDED.bio,
                    avatar_url = EXCLUDED.avatar_url,
                    updated_at = NOW()
                """,
                user_id, *values
            )

    # Catalog

    async def list_products(self, page: int, limit: int,
                            category: Optional[str] = None) -> Tuple[List[Dict[str, Any]], int]:
        """One page of products, newest first, plus the total match count."""
        offset = (page - 1) * limit
        params: List[Any] = []
        where_clause = ""
        if category:
            where_clause = "WHERE category = $1"
            params.append(category)

        async with self._connection("list_products") as conn:
            rows = await conn.fetch(
                f"""
                SELECT id, name, description, price, category, image_url, stock_quantity, created_at
                FROM products
                {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params, limit, offset
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM products {where_clause}", *params)

        return [to_record(row) for row in rows], total

    async def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        async with self._connection("get_product") as conn:
            row = await conn.fetchrow("SELECT * FROM products WHERE id = $1", product_id)
        return to_record(row)

    # Orders

    async def list_user_orders(self, user_id: int, page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        """One page of a user's orders with their item counts."""
        offset = (page - 1) * limit
        async with self._connection("list_user_orders") as conn:
            rows = await conn.fetch(
                """
                SELECT o.id, o.total_amount, o.status::text AS status, o.created_at,
                       COUNT(oi.id) AS item_count
                FROM orders o
                LEFT JOIN order_items oi ON o.id = oi.order_id
                WHERE o.user_id = $1
                GROUP BY o.id
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT $2 OFFSET $3
                """,
                user_id, limit, offset
            )
            total = await conn.fetchval("SELECT COUNT(*) FROM orders WHERE user_id = $1", user_id)

        return [to_record(row) for row in rows], total

    async def get_dashboard(self, user_id: int, recent_limit: int = 5) -> Dict[str, Any]:
        """Order statistics and the most recent orders for a user."""
        async with self._connection("get_dashboard") as conn:
            stats = await conn.fetchrow(
                """
                SELECT COUNT(DISTINCT o.id) AS total_orders,
                       COALESCE(SUM(o.total_amount), 0) AS total_spent
                FROM orders o
                WHERE o.user_id = $1
                """,
                user_id
            )
            recent = await conn.fetch(
                """
                SELECT o.id, o.total_amount, o.status::text AS status, o.created_at,
                       COUNT(oi.id) AS item_count
                FROM orders o
                LEFT JOIN order_items oi ON o.id = oi.order_id
                WHERE o.user_id = $1
                GROUP BY o.id
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT $2
                """,
                user_id, recent_limit
            )

        return {
            "stats": to_record(stats) or {"total_orders": 0, "total_spent": 0},
            "recent_orders": [to_record(row) for row in recent],
        }

    @asynccontextmanager
    async def transaction(self):
        """Yield an order writer inside a database transaction."""
        async with self._connection("transaction") as conn:
            async with conn.transaction():
                yield PostgreSQLOrderWriter(conn)
