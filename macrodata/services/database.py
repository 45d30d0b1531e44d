"""
Per-owner SQLite database access.

Every owner gets its own database file so owners never share mutable state.
"""

import os
import re
import string
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.tables import Base
from ..utils.config import StoreConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

_SAFE_OWNER_CHARS = frozenset(string.ascii_letters + string.digits + '_-')
_ESCAPED_BYTE = re.compile(r'~([0-9A-F]{2})')


def owner_key(owner_id: str) -> str:
    """Reversible, filesystem-safe name for an owner, e.g. ``alice@corp`` -> ``alice~40corp``.

    Every UTF-8 byte outside ``[A-Za-z0-9_-]`` becomes ``~XX``.
    """
    return ''.join(chr(byte) if chr(byte) in _SAFE_OWNER_CHARS else f'~{byte:02X}'
                   for byte in owner_id.encode('utf-8'))


def owner_from_key(key: str) -> Optional[str]:
    """Owner id encoded by ``owner_key``, or None if ``key`` is not such a name."""
    parts = _ESCAPED_BYTE.split(key)
    raw = bytearray()
    try:
        for i, part in enumerate(parts):
            raw.extend(bytes.fromhex(part) if i % 2 else part.encode('ascii'))
        owner_id = raw.decode('utf-8')
    except UnicodeError:
        return None
    return owner_id if owner_id and owner_key(owner_id) == key else None


def owner_dir(owner_id: str, store_config: Optional[StoreConfig] = None) -> str:
    """Directory holding an owner's database and credential registry."""
    store_config = store_config or config.store
    return os.path.join(store_config.data_dir, owner_key(owner_id))


def resolve_database_url(owner_id: str, store_config: Optional[StoreConfig] = None) -> str:
    """Database URL for an owner.

    ``MACRODATA_DATABASE_URL`` may contain an ``{owner}`` placeholder; otherwise
    a SQLite file under the owner's directory is used.
    """
    store_config = store_config or config.store
    if store_config.database_url:
        return store_config.database_url.replace('{owner}', owner_key(owner_id))

    path = os.path.abspath(os.path.join(owner_dir(owner_id, store_config), 'memory.db'))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return f'sqlite:///{path}'


class MemoryDatabase:
    """Engine and session factory for one owner's relational store."""

    def __init__(self, url: str):
        self.url = url
        self.engine = self._create_engine(url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.debug(f'Opened memory database: {url}')

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if not url.startswith('sqlite'):
            return create_engine(url, future=True)

        kwargs = {'connect_args': {'check_same_thread': False}, 'future': True}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # A single shared connection, otherwise each session sees an empty database
            kwargs['poolclass'] = StaticPool
        return create_engine(url, **kwargs)

    def session(self) -> Session:
        return self._session_factory()

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql('SELECT 1')
            return True
        except Exception as e:
            logger.error(f'Memory database health check failed: {e}')
            return False

    def dispose(self) -> None:
        self.engine.dispose()
