"""
Endpoint de santé pour vérifier la disponibilité de l'API et du stockage.

Expose `/health` pour signaler l'état général, le backend des verrous et l'identité réseau.
"""

from fastapi import APIRouter

from syncmesh.core.container import container

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Vérifie la disponibilité de l'API et le backend de stockage."""
    return {
        "status": "ok",
        "storage": getattr(container, "storage_backend", "unknown"),
        "redis_url": bool(getattr(container.settings, "REDIS_URL", None)),
        "network": container.directory.get_network_identity(),
        "nodes": [n.id for n in container.directory.list_nodes()],
    }
