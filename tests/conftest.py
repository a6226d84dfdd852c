"""Configuration de test pour pytest avec gestion des chemins.

Ce module ajoute la racine du projet au sys.path, fixe la topologie du réseau de test avant le
chargement du conteneur, et fournit les fixtures du moteur (dépôt de contenu, ledger, base
sqlite en mémoire, distributeur, moteur de synchro).
"""

import os
import sys
from datetime import UTC, datetime

import pytest

# Ensure project root is on sys.path so that
# imports like `from syncmesh...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Topologie utilisée par le conteneur global (routes API)
os.environ.setdefault("SYNC_NETWORK_HOST", "a.example")
os.environ.setdefault(
    "SYNC_NODES", "1=https://a.example,2=https://a.example/fr,3=https://a.example/de"
)
os.environ.setdefault("SYNC_DISTRIBUTE_INLINE", "1")
os.environ.pop("REDIS_URL", None)
os.environ.pop("DATABASE_URL", None)

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from syncmesh.domain.conditions import ConditionEngine  # noqa: E402
from syncmesh.domain.conflicts import ConflictResolver  # noqa: E402
from syncmesh.domain.entities import Node  # noqa: E402
from syncmesh.domain.ledger import ConnectionLedger  # noqa: E402
from syncmesh.domain.repair import Repairer  # noqa: E402
from syncmesh.domain.review import ReviewGate  # noqa: E402
from syncmesh.infra.content_repo import InMemoryContentRepository  # noqa: E402
from syncmesh.infra.node_directory import StaticNodeDirectory  # noqa: E402
from syncmesh.infra.ops.locks import LockManager  # noqa: E402
from syncmesh.infra.repo.cluster_repo import ClusterRepo  # noqa: E402
from syncmesh.infra.repo.distribution_repo import DistributionRepo  # noqa: E402
from syncmesh.infra.repo.models import Base  # noqa: E402
from syncmesh.infra.repo.review_repo import ReviewRepo  # noqa: E402
from syncmesh.services.dispatch import InlineDispatcher  # noqa: E402
from syncmesh.services.distributor import Distributor  # noqa: E402
from syncmesh.services.sync_engine import SyncEngine  # noqa: E402
from tests.fakes import FakeClock, FakeTransport, RecordingDispatcher  # noqa: E402

NETWORK = "a.example"


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))


@pytest.fixture
def content():
    return InMemoryContentRepository()


@pytest.fixture
def directory():
    nodes = [
        Node(1, "https://a.example"),
        Node(2, "https://a.example/fr"),
        Node(3, "https://a.example/de"),
    ]
    return StaticNodeDirectory(nodes, NETWORK)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def locks():
    return LockManager(timeout=1.0)


@pytest.fixture
def ledger(content, directory, locks, transport):
    return ConnectionLedger(content, directory, locks, transport)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def distribution_repo(session_factory):
    return DistributionRepo(session_factory)


@pytest.fixture
def review_repo(session_factory):
    return ReviewRepo(session_factory)


@pytest.fixture
def cluster_repo(session_factory):
    return ClusterRepo(session_factory)


@pytest.fixture
def resolver(content, ledger):
    return ConflictResolver(content, ledger)


@pytest.fixture
def review_gate(review_repo, content, ledger, clock):
    return ReviewGate(review_repo, content, ledger, clock=clock)


@pytest.fixture
def repairer(content, directory, ledger, transport):
    return Repairer(content, directory, ledger, transport)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def distributor(distribution_repo, content, directory, resolver, review_gate, transport, locks,
                dispatcher, clock):
    return Distributor(
        distribution_repo,
        content,
        directory,
        resolver,
        review_gate=review_gate,
        transport=transport,
        locks=locks,
        dispatcher=dispatcher,
        clock=clock,
        lock_timeout_s=1.0,
    )


@pytest.fixture
def inline_distributor(distributor):
    """Distributeur qui exécute chaque élément juste après le commit."""
    distributor.dispatcher = InlineDispatcher(distributor.run)
    return distributor


@pytest.fixture
def engine(content, directory, cluster_repo, ledger, distributor, review_gate, clock):
    sync_engine = SyncEngine(
        content,
        directory,
        cluster_repo,
        ConditionEngine(content, clock=clock),
        ledger,
        distributor,
        review_gate=review_gate,
        clock=clock,
    )
    review_gate.release = sync_engine.release
    return sync_engine


@pytest.fixture
def ctx1(directory):
    return directory.context(1)


@pytest.fixture
def ctx2(directory):
    return directory.context(2)
