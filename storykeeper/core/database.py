import asyncpg
from storykeeper.core.config import settings
from storykeeper.core.logger import Logger

logger = Logger("Database")


class Database:
    def __init__(self, url: str = None):
        self.url = url if url is not None else settings.DATABASE_URL
        self.pool: asyncpg.Pool = None

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def connect(self):
        if not self.url:
            logger.info("DATABASE_URL not set; memories are kept in process")
            return
        try:
            self.pool = await asyncpg.create_pool(self.url)
            logger.info("✅ Connected to PostgreSQL")
            await self.init_db()
        except Exception as e:
            logger.error("Failed to connect to PostgreSQL", e)
            self.pool = None

    async def disconnect(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Closed PostgreSQL connection")

    async def ping(self) -> bool:
        if not self.pool:
            return False
        try:
            await self.pool.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warn(f"Database ping failed: {e}")
            return False

    async def init_db(self):
        """Initialize database tables if they don't exist."""
        if not self.pool:
            return

        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id SERIAL PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    payload JSONB NOT NULL,
                    user_email TEXT,
                    ip_address TEXT,
                    user_agent TEXT,
                    created_at TIMESTAMP DEFAULT NOW(),
                    UNIQUE(user_id, conversation_id, message_id)
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_conversation
                ON memories(user_id, conversation_id);
            """)

            logger.info("Memory tables initialized")


db = Database()
