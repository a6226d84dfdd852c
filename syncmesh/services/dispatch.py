"""Stratégies d'envoi des éléments de distribution vers l'exécution.

- CeleryDispatcher: une tâche `syncmesh.tasks.run_distribution_item` par élément
- InlineDispatcher: exécution dans le processus courant (dev, SYNC_DISTRIBUTE_INLINE)

Dans les deux cas l'envoi est différé au commit de la transaction qui a créé les éléments.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from syncmesh.infra.ops.post_commit import register_action_after_commit, send_task_after_commit

RUN_TASK_NAME = "syncmesh.tasks.run_distribution_item"


class CeleryDispatcher:
    def __init__(self, queue: str | None = None) -> None:
        self.queue = queue

    def schedule(self, session: Session, item_ids: list[int]) -> None:
        for item_id in item_ids:
            send_task_after_commit(session, RUN_TASK_NAME, item_id, queue=self.queue)


class InlineDispatcher:
    """Exécute chaque élément via `runner(item_id)` juste après le commit."""

    def __init__(self, runner: Callable[[int], object]) -> None:
        self.runner = runner

    def schedule(self, session: Session, item_ids: list[int]) -> None:
        for item_id in item_ids:
            register_action_after_commit(session, self.runner, item_id)
