"""Post-commit dispatch helpers for distribution handoff.

Les éléments de distribution sont insérés dans une transaction SQLAlchemy; leur envoi aux
workers (tâche Celery ou exécution en ligne) n'a lieu qu'après le commit effectif. En cas de
rollback, les actions planifiées sont oubliées.

Une action qui échoue après commit est journalisée: l'élément reste `init` et sera remonté par
la détection des éléments bloqués.
"""

from __future__ import annotations

import functools
from collections.abc import Callable

import structlog
from prometheus_client import Counter
from sqlalchemy import event
from sqlalchemy.orm import Session

log = structlog.get_logger(__name__).bind(component="post_commit")

POSTCOMMIT_DISPATCH_TOTAL = Counter(
    "syncmesh_postcommit_dispatch_total",
    "Post-commit dispatch outcomes",
    ["result"],
)

_ACTIONS_KEY = "_post_commit_actions"
_BOUND_KEY = "_post_commit_bound"


def _bind_session_events(session: Session) -> None:
    """Bind commit/rollback events once for the given session instance."""
    if session.info.get(_BOUND_KEY):
        return
    session.info[_BOUND_KEY] = True

    @event.listens_for(session, "after_commit")
    def _after_commit(_session: Session) -> None:
        actions = list(_session.info.get(_ACTIONS_KEY) or [])
        _session.info[_ACTIONS_KEY] = []
        for action in actions:
            try:
                action()
            except Exception:
                POSTCOMMIT_DISPATCH_TOTAL.labels(result="failed").inc()
                log.exception("post_commit_action_failed")
                continue
            POSTCOMMIT_DISPATCH_TOTAL.labels(result="dispatched").inc()

    @event.listens_for(session, "after_rollback")
    def _after_rollback(_session: Session) -> None:
        if _session.info.get(_ACTIONS_KEY):
            POSTCOMMIT_DISPATCH_TOTAL.labels(result="rolled_back").inc()
        _session.info[_ACTIONS_KEY] = []


def register_action_after_commit(
    session: Session,
    func: Callable[..., object],
    *args,
    **kwargs,
) -> None:
    """Register a callable to run after a successful commit of `session`."""
    _bind_session_events(session)
    session.info.setdefault(_ACTIONS_KEY, []).append(functools.partial(func, *args, **kwargs))


def send_task_after_commit(
    session: Session,
    task_name: str,
    *args,
    queue: str | None = None,
    countdown: int | None = None,
    **kwargs,
) -> None:
    """Envoie une tâche Celery seulement après le commit de la transaction courante.

    Args:
        session: Session SQLAlchemy concernée.
        task_name: Nom complet de la tâche (ex: "syncmesh.tasks.run_distribution_item").
        args: Arguments positionnels de la tâche.
        queue: Nom de la queue cible (optionnel).
        countdown: Délai (secondes) avant exécution (optionnel).
        kwargs: Arguments nommés de la tâche.
    """

    def _send_task() -> None:
        from syncmesh.app.celery_app import celery_app  # noqa: PLC0415

        opts: dict[str, object] = {}
        if queue:
            opts["queue"] = queue
        if countdown is not None:
            opts["countdown"] = countdown
        celery_app.send_task(task_name, args=args, kwargs=kwargs, **opts)

    register_action_after_commit(session, _send_task)


__all__ = [
    "register_action_after_commit",
    "send_task_after_commit",
]
