"""
Conteneur d'injection de dépendances du moteur de synchronisation.

Instancie les composants centraux (settings, base SQL, dépôts, verrous, ledger, distributeur,
moteur de synchro) et expose un singleton `container` utilisé par l'API, les tâches et les
scripts.
"""

import redis
import structlog

from syncmesh.config.flags import ff_autorepair_on_change, ff_distribute_inline
from syncmesh.core.settings import Settings, get_settings
from syncmesh.domain.conditions import ConditionEngine
from syncmesh.domain.conflicts import ConflictResolver
from syncmesh.domain.entities import Node
from syncmesh.domain.ledger import ConnectionLedger
from syncmesh.domain.repair import Repairer
from syncmesh.domain.review import ReviewGate
from syncmesh.infra.content_repo import InMemoryContentRepository
from syncmesh.infra.node_directory import StaticNodeDirectory, parse_nodes, parse_remotes
from syncmesh.infra.ops.idempotency import build_idempotency_store
from syncmesh.infra.ops.locks import LockManager
from syncmesh.infra.remote.http_transport import HttpRemoteTransport
from syncmesh.infra.repo.cluster_repo import ClusterRepo
from syncmesh.infra.repo.db import create_schema, get_engine, get_session_factory
from syncmesh.infra.repo.distribution_repo import DistributionRepo
from syncmesh.infra.repo.review_repo import ReviewRepo
from syncmesh.services.dispatch import CeleryDispatcher, InlineDispatcher
from syncmesh.services.distributor import Distributor
from syncmesh.services.sync_engine import SyncEngine

log = structlog.get_logger(__name__).bind(component="container")


class Container:
    def __init__(self, settings: Settings | None = None, content=None, transport=None,
                 inline: bool | None = None):
        self.settings = settings or get_settings()
        s = self.settings

        # SQL: file de distribution, revues, clusters
        self.engine = get_engine(s.DATABASE_URL)
        create_schema(self.engine)
        self.session_factory = get_session_factory(self.engine)
        self.distribution_repo = DistributionRepo(self.session_factory)
        self.review_repo = ReviewRepo(self.session_factory)
        self.cluster_repo = ClusterRepo(self.session_factory)

        # topologie
        nodes = parse_nodes(s.SYNC_NODES) or [
            Node(id=s.SYNC_NODE_ID, base_url=f"https://{s.SYNC_NETWORK_HOST}")
        ]
        self.directory = StaticNodeDirectory(nodes, s.SYNC_NETWORK_HOST)
        self.content = content or InMemoryContentRepository(path=s.SYNC_CONTENT_STORE_PATH)
        self.transport = transport or HttpRemoteTransport(
            parse_remotes(s.SYNC_REMOTES),
            timeout_s=s.SYNC_REMOTE_TIMEOUT_S,
            origin_host=self.directory.get_network_identity(),
        )

        # verrous et idempotence (Redis si configuré)
        self.storage_backend = "memory"
        lock_client = None
        if s.REDIS_URL:
            try:
                lock_client = redis.Redis.from_url(s.REDIS_URL)
                lock_client.ping()
                self.storage_backend = "redis"
            except redis.RedisError as err:
                if s.REQUIRE_REDIS:
                    raise RuntimeError("Redis required but unavailable") from err
                log.warning("redis_unavailable", error=type(err).__name__)
                lock_client = None
                self.storage_backend = "memory-fallback"
        elif s.REQUIRE_REDIS:
            raise RuntimeError("Redis required but REDIS_URL not set")
        self.locks = LockManager(lock_client, timeout=s.SYNC_LOCK_TIMEOUT_S)
        self.idempotency = build_idempotency_store(
            s.REDIS_URL if lock_client is not None else None,
            window_seconds=s.SYNC_DEDUP_WINDOW_S,
            require_redis=s.REQUIRE_REDIS,
        )

        # domaine
        self.ledger = ConnectionLedger(self.content, self.directory, self.locks, self.transport)
        self.conditions = ConditionEngine(self.content)
        self.resolver = ConflictResolver(self.content, self.ledger)
        self.review_gate = ReviewGate(self.review_repo, self.content, self.ledger)
        self.repairer = Repairer(self.content, self.directory, self.ledger, self.transport)

        inline = ff_distribute_inline() if inline is None else inline
        self.distributor = Distributor(
            self.distribution_repo,
            self.content,
            self.directory,
            self.resolver,
            review_gate=self.review_gate,
            transport=self.transport,
            locks=self.locks,
            stuck_threshold_s=s.SYNC_STUCK_THRESHOLD_S,
            retention_days=s.SYNC_DISTRIBUTION_RETENTION_DAYS,
            default_conflict_policy=s.SYNC_DEFAULT_CONFLICT_POLICY,
            lock_timeout_s=s.SYNC_LOCK_TIMEOUT_S,
        )
        if inline:
            self.distributor.dispatcher = InlineDispatcher(self.distributor.run)
        else:
            self.distributor.dispatcher = CeleryDispatcher()

        self.sync_engine = SyncEngine(
            self.content,
            self.directory,
            self.cluster_repo,
            self.conditions,
            self.ledger,
            self.distributor,
            review_gate=self.review_gate,
            idempotency=self.idempotency,
            repairer=self.repairer,
            autorepair_on_change=ff_autorepair_on_change(),
        )
        # l'approbation d'une revue libère l'état courant vers les destinations
        self.review_gate.release = self.sync_engine.release

    def context(self, node_id: int | None = None):
        """Handle du nœud demandé (par défaut SYNC_NODE_ID)."""
        return self.directory.context(node_id or self.settings.SYNC_NODE_ID)


container = Container()
