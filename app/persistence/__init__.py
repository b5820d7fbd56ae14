# Persistence gateways for DwellTime API
import logging
from functools import lru_cache

from app.config import settings
from app.persistence.base import PersistenceGateway

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_gateway() -> PersistenceGateway:
    """Gateway selected by PERSISTENCE_BACKEND"""
    backend = settings.persistence_backend.lower()

    if backend == "memory":
        from app.persistence.memory import InMemoryGateway
        logger.warning("Using in-memory persistence; data is lost on restart")
        return InMemoryGateway()

    if backend == "postgres":
        from app.persistence.postgres import PostgresGateway
        return PostgresGateway()

    raise ValueError(f"Unknown persistence backend: {settings.persistence_backend}")
