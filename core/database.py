"""
Database engines and sessions for the ledger, staging area and warehouse connections
"""

from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION = "default"


class ConnectionRegistry:
    """
    Named async engines, created lazily.
    
    The "default" connection points at DATABASE_URL and also hosts the
    batch ledger and staging tables. Other names come from
    WAREHOUSE_CONNECTIONS.
    """
    
    def __init__(self, urls: Optional[Dict[str, str]] = None, echo: bool = False):
        self.urls = {DEFAULT_CONNECTION: settings.DATABASE_URL}
        self.urls.update(settings.WAREHOUSE_CONNECTIONS)
        if urls:
            self.urls.update(urls)
        self.echo = echo
        self._engines: Dict[str, AsyncEngine] = {}
    
    def get_engine(self, name: Optional[str] = None) -> AsyncEngine:
        """Return the engine for a named connection"""
        name = name or DEFAULT_CONNECTION
        if name not in self._engines:
            if name not in self.urls:
                raise KeyError(f"Unknown database connection: {name}")
            logger.debug(f"Creating engine for connection '{name}'")
            self._engines[name] = create_async_engine(
                self.urls[name],
                echo=self.echo,
                poolclass=NullPool,
                future=True
            )
        return self._engines[name]
    
    def session_maker(self, name: Optional[str] = None) -> async_sessionmaker:
        """Session factory bound to a named connection"""
        return async_sessionmaker(
            self.get_engine(name),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    
    async def dispose(self):
        """Dispose every engine created so far"""
        for name, engine in self._engines.items():
            await engine.dispose()
            logger.debug(f"Disposed engine for connection '{name}'")
        self._engines.clear()


registry = ConnectionRegistry(echo=settings.ENVIRONMENT == "development")
