"""Taxonomie des erreurs du moteur de synchronisation.

Chaque classe correspond à une famille d'erreur:
- identity: GID mal formé ou introuvable, fatal pour l'opération, jamais rejoué
- connection: réseau distant injoignable ou inactif
- distribution: échec transitoire d'écriture/transport, rejouable
- consistency: dérive statut/ledger détectée par le réparateur
- conflict: import en conflit sans politique de résolution fournie
"""

from __future__ import annotations

IDENTITY = "identity"
CONNECTION = "connection"
DISTRIBUTION = "distribution"
CONSISTENCY = "consistency"
CONFLICT = "conflict"


class SyncError(Exception):
    """Erreur de base, porte sa famille dans `kind`."""

    kind = DISTRIBUTION

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class IdentityError(SyncError):
    kind = IDENTITY


class RemoteConnectionError(SyncError):
    kind = CONNECTION


class DistributionError(SyncError):
    kind = DISTRIBUTION


class ConsistencyError(SyncError):
    kind = CONSISTENCY


class ConflictPolicyError(SyncError):
    kind = CONFLICT


def classify(exc: BaseException) -> str:
    """Retourne la famille d'une exception quelconque (défaut: distribution)."""
    return getattr(exc, "kind", DISTRIBUTION)
