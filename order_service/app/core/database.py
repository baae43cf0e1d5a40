"""Database configuration for Order Service"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.base import OrderServiceBase
from ..utils.logging import setup_order_logging
from .setting import get_settings

logger = setup_order_logging("order_service.database")


class OrderServiceDatabaseManager:
    """Owns the async engine and session factory for orders, products and events."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 40,
    ) -> None:
        self.database_url = database_url
        engine_kwargs: Dict[str, Any] = {
            "echo": echo,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
        }

        if database_url.startswith("sqlite"):
            # aiosqlite, used for development and tests
            engine_kwargs["connect_args"] = {
                "timeout": 60,
                "check_same_thread": False,
            }
        else:
            # asyncpg
            engine_kwargs.update(
                {
                    "pool_timeout": 45,
                    "pool_recycle": 3600,
                    "pool_pre_ping": True,
                    "connect_args": {
                        "command_timeout": 30,
                        "server_settings": {"jit": "off"},
                    },
                }
            )

        self.async_engine = create_async_engine(database_url, **engine_kwargs)
        self.async_session_maker = async_sessionmaker(
            bind=self.async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        """Create the orders, products and events tables if missing."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(OrderServiceBase.metadata.create_all, checkfirst=True)
        logger.info(
            "Order Service tables ready",
            extra={"tables": sorted(OrderServiceBase.metadata.tables)},
        )

    async def drop_tables(self) -> None:
        async with self.async_engine.begin() as conn:
            await conn.run_sync(OrderServiceBase.metadata.drop_all)

    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session for Order Service."""
        async with self.async_session_maker() as session:
            yield session

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        await self.async_engine.dispose()


settings = get_settings()
database_manager = OrderServiceDatabaseManager(
    database_url=settings.ORDER_DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
)

