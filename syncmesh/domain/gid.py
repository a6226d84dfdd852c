# ============================================================
# Module : syncmesh/domain/gid.py
# Objet  : Identifiant global (GID) d'un élément racine.
# Format : {node_id}-{item_id}[-{remote_host}]
# ============================================================

from __future__ import annotations

import re

from syncmesh.domain.errors import IdentityError

GID_SEPARATOR = "-"

_INT_TOKEN = re.compile(r"^\d+$")
_PROTOCOL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def nice_url(url: str | None) -> str:
    """Normalise une URL réseau en hôte "propre" (sans protocole ni slash final).

    >>> nice_url("https://www.example.com/sub/")
    'www.example.com/sub'
    """
    if not url:
        return ""
    return _PROTOCOL.sub("", str(url).strip()).rstrip("/")


def make_gid(node_id: int, item_id: int, remote_host: str | None = "") -> str:
    """Compose le GID d'un élément racine."""
    gid = f"{int(node_id)}{GID_SEPARATOR}{int(item_id)}"
    host = nice_url(remote_host)
    if host:
        gid += f"{GID_SEPARATOR}{host}"
    return gid


def parse_gid(gid: str | None) -> tuple[int, int, str]:
    """Décompose un GID en (node_id, item_id, remote_host).

    Le segment hôte correspond à tout ce qui suit le deuxième séparateur, il peut donc
    contenir des tirets. Lève `IdentityError` si un segment numérique est invalide.
    """
    if not gid or not isinstance(gid, str):
        raise IdentityError(f"invalid gid: {gid!r}", gid=gid)
    parts = gid.strip().split(GID_SEPARATOR, 2)
    if len(parts) < 2 or not _INT_TOKEN.match(parts[0]) or not _INT_TOKEN.match(parts[1]):
        raise IdentityError(f"invalid gid: {gid!r}", gid=gid)
    host = parts[2] if len(parts) == 3 else ""
    return int(parts[0]), int(parts[1]), host


def is_valid_gid(gid: str | None) -> bool:
    try:
        parse_gid(gid)
    except IdentityError:
        return False
    return True


def is_remote_gid(gid: str, own_host: str) -> bool:
    """Vrai si le GID désigne une racine hébergée sur un autre réseau."""
    _, _, host = parse_gid(gid)
    return bool(host) and host != nice_url(own_host)


def localize_gid(gid: str, own_host: str) -> str:
    """Retire le segment hôte quand il désigne le réseau courant."""
    node_id, item_id, host = parse_gid(gid)
    if host and host == nice_url(own_host):
        return make_gid(node_id, item_id)
    return gid
