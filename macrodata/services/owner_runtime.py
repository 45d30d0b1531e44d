"""
Per-owner runtime: a single-threaded actor and the services bound to one owner.

All work for an owner (tool calls, mirror syncs, rebuilds, scheduled runs) is
queued on that owner's actor and runs one item at a time in arrival order.
Different owners share nothing mutable except the thread-safe remote clients.
"""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig, config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from .conversation_indexer import ConversationIndexer
from .database import MemoryDatabase, owner_dir, owner_from_key, resolve_database_url
from .entity_store import EntityStore
from .memory_writer import MemoryWriter
from .remote_tools import CredentialRegistry, RemoteToolClient
from .retrieval_ranker import RetrievalRanker
from .scheduler import ScheduleStore
from .task_runner import TaskRunner
from .vector_mirror import VectorMirror

logger = get_logger(__name__)


class OwnerActor:
    """Serializes every operation for one owner on a single worker thread."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        self._worker_ident: Optional[int] = None
        self._executor = ThreadPoolExecutor(max_workers=1,
                                            thread_name_prefix=f'owner-{owner_id}',
                                            initializer=self._remember_worker)

    def _remember_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Queue work behind everything already submitted for this owner."""
        return self._executor.submit(fn, *args, **kwargs)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run work on the actor and wait for its result.

        Calls made from the actor's own thread run inline, they are already serialized.
        """
        if threading.get_ident() == self._worker_ident:
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@dataclass
class OwnerServices:
    """Everything bound to a single owner."""
    owner_id: str
    actor: OwnerActor
    database: MemoryDatabase
    store: EntityStore
    mirror: VectorMirror
    writer: MemoryWriter
    schedules: ScheduleStore
    runner: TaskRunner
    indexer: ConversationIndexer
    ranker: RetrievalRanker
    credentials: CredentialRegistry
    remote: RemoteToolClient


class OwnerRegistry:
    """Lazily builds and caches OwnerServices per owner."""

    def __init__(self,
                 app_config: Optional[AppConfig] = None,
                 embed: Optional[BedrockEmbed] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 llm: Optional[BedrockLLM] = None,
                 remote: Optional[RemoteToolClient] = None):
        self.config = app_config or config
        self._embed = embed
        self._opensearch = opensearch
        self._llm = llm
        self._remote = remote
        self._owners: Dict[str, OwnerServices] = {}
        self._lock = threading.Lock()

    @property
    def embed(self) -> BedrockEmbed:
        if self._embed is None:
            self._embed = BedrockEmbed(self.config.bedrock_embed)
        return self._embed

    @property
    def opensearch(self) -> OpenSearchClient:
        if self._opensearch is None:
            self._opensearch = OpenSearchClient(self.config.opensearch)
        return self._opensearch

    @property
    def llm(self) -> BedrockLLM:
        if self._llm is None:
            self._llm = BedrockLLM(self.config.bedrock_llm)
        return self._llm

    @property
    def remote(self) -> RemoteToolClient:
        if self._remote is None:
            self._remote = RemoteToolClient(self.config.remote_tools)
        return self._remote

    def get(self, owner_id: str) -> OwnerServices:
        """Services for an owner, created on first use."""
        if not owner_id or not owner_id.strip():
            raise ValueError('User ID is required')

        with self._lock:
            services = self._owners.get(owner_id)
            if services is None:
                services = self._build(owner_id)
                self._owners[owner_id] = services
            return services

    def _build(self, owner_id: str) -> OwnerServices:
        database = MemoryDatabase(resolve_database_url(owner_id, self.config.store))
        store = EntityStore(database)
        mirror = VectorMirror(owner_id, embed=self.embed, opensearch=self.opensearch)
        services = OwnerServices(
            owner_id=owner_id,
            actor=OwnerActor(owner_id),
            database=database,
            store=store,
            mirror=mirror,
            writer=MemoryWriter(store, mirror),
            schedules=ScheduleStore(database),
            runner=TaskRunner(store, mirror, llm=self.llm, scheduler_config=self.config.scheduler),
            indexer=ConversationIndexer(owner_id,
                                        embed=self.embed,
                                        opensearch=self.opensearch,
                                        conversation_config=self.config.conversations),
            ranker=RetrievalRanker(owner_id,
                                   embed=self.embed,
                                   opensearch=self.opensearch,
                                   conversation_config=self.config.conversations),
            credentials=CredentialRegistry(os.path.join(owner_dir(owner_id, self.config.store), 'mcps.json')),
            remote=self.remote)
        logger.info(f'Initialized services for owner {owner_id}')
        return services

    def known_owners(self) -> List[str]:
        """Owners loaded in this process plus owners with a database on disk."""
        with self._lock:
            owners = set(self._owners)
        data_dir = self.config.store.data_dir
        if not self.config.store.database_url and os.path.isdir(data_dir):
            for name in os.listdir(data_dir):
                owner_id = owner_from_key(name)
                if owner_id and os.path.isfile(os.path.join(data_dir, name, 'memory.db')):
                    owners.add(owner_id)
        return sorted(owners)

    def open_databases(self) -> List[MemoryDatabase]:
        with self._lock:
            return [services.database for services in self._owners.values()]

    def shutdown(self) -> None:
        with self._lock:
            for services in self._owners.values():
                services.actor.shutdown()
                services.database.dispose()
            self._owners.clear()
