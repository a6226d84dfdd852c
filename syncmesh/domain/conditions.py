"""
Moteur des conditions de contenu.

Une condition est un prédicat déclaratif sur les éléments d'un nœud (type, statut publié,
termes de taxonomie, fenêtre de dates, nombre maximal d'éléments). Son évaluation produit un
ensemble concret d'éléments, ordonné du plus récent au plus ancien.

Les conditions limitées en nombre ("les N derniers") sont sensibles à l'ordre: l'entrée d'un
élément peut en faire sortir un autre. Un changement d'appartenance impose donc de redistribuer
toute la condition; les autres conditions ne redistribuent que l'élément modifié.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta

import structlog

from syncmesh.domain.entities import META_SYNC_STATUS, ContentCondition, ContentItem, DateWindow
from syncmesh.domain.ports import ContentRepository, ItemQuery

log = structlog.get_logger(__name__).bind(component="conditions")


@dataclass
class MembershipDelta:
    added: set[int] = field(default_factory=set)
    removed: set[int] = field(default_factory=set)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def membership_delta(item: ContentItem | None, before_ids, after_ids) -> MembershipDelta:
    """Différence d'appartenance (conditions ou éléments) avant/après un changement."""
    before, after = set(before_ids or ()), set(after_ids or ())
    delta = MembershipDelta(added=after - before, removed=before - after)
    if delta.changed and item is not None:
        log.debug("membership_changed", item_id=item.id, added=sorted(delta.added),
                  removed=sorted(delta.removed))
    return delta


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 - months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def window_bounds(window: DateWindow, now: datetime) -> tuple[datetime | None, datetime | None]:
    """Bornes (incluses) d'une fenêtre de dates."""
    if window.mode == "static":
        if window.after is None:
            return None, None
        return datetime.combine(window.after, time.min, tzinfo=UTC), None
    if window.mode == "static_range":
        after = datetime.combine(window.after, time.min, tzinfo=UTC) if window.after else None
        before = datetime.combine(window.before, time.max, tzinfo=UTC) if window.before else None
        return after, before
    # dynamic
    value = max(int(window.since_value or 0), 0)
    today = now.astimezone(UTC).date()
    if window.since_unit == "days":
        start = today - timedelta(days=value)
    elif window.since_unit == "months":
        start = _shift_months(today, value)
    else:
        start = _shift_months(today, value * 12)
    return datetime.combine(start, time.min, tzinfo=UTC), None


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ConditionEngine:
    """Évalue les conditions contre le dépôt de contenu."""

    def __init__(self, content: ContentRepository, clock=None) -> None:
        self.content = content
        self.clock = clock or (lambda: datetime.now(UTC))

    def build_query(self, condition: ContentCondition, now: datetime | None = None) -> ItemQuery:
        after = before = None
        if condition.date_window is not None:
            after, before = window_bounds(condition.date_window, now or self.clock())
        query = ItemQuery(
            type=condition.content_type,
            taxonomy=condition.taxonomy,
            terms=list(condition.terms),
            after=after,
            before=before,
        )
        if not condition.auto_promote_to_root:
            query.meta_equals = {META_SYNC_STATUS: "root"}
        return query

    def evaluate(
        self, condition: ContentCondition, now: datetime | None = None
    ) -> list[ContentItem]:
        """Éléments satisfaisant la condition, du plus récent au plus ancien."""
        query = self.build_query(condition, now)
        items = [
            i for i in self.content.query_items(condition.source_node_id, query)
            if i.sync_status != "linked"
        ]
        items.sort(key=lambda i: (_aware(i.date), i.id), reverse=True)
        if condition.is_count_limited:
            items = items[: condition.count_limit]
        return items

    def evaluate_ids(self, condition: ContentCondition, now: datetime | None = None) -> list[int]:
        return [i.id for i in self.evaluate(condition, now)]

    def _predicate(self, item: ContentItem, condition: ContentCondition, now: datetime) -> bool:
        if item.node_id != condition.source_node_id or item.type != condition.content_type:
            return False
        if item.status != "publish" or item.sync_status == "linked":
            return False
        if not condition.auto_promote_to_root and item.sync_status != "root":
            return False
        if condition.taxonomy:
            assigned = set(item.taxonomies.get(condition.taxonomy, []))
            if condition.terms and not assigned.intersection(condition.terms):
                return False
            if not condition.terms and not assigned:
                return False
        if condition.date_window is not None:
            after, before = window_bounds(condition.date_window, now)
            published = _aware(item.date)
            if after and published < after:
                return False
            if before and published > before:
                return False
        return True

    def matches(self, item: ContentItem, condition: ContentCondition,
                now: datetime | None = None) -> bool:
        """Vrai si l'élément satisfait la condition (top-N compris)."""
        now = now or self.clock()
        if not self._predicate(item, condition, now):
            return False
        if condition.is_count_limited:
            return item.id in self.evaluate_ids(condition, now)
        return True

    def conditions_including_item(self, item: ContentItem, conditions: list[ContentCondition],
                                  now: datetime | None = None) -> list[ContentCondition]:
        """Conditions (du bon nœud et du bon type) qui incluent l'élément."""
        now = now or self.clock()
        candidates = [
            c for c in conditions
            if c.source_node_id == item.node_id and c.content_type == item.type
        ]
        return [c for c in candidates if self.matches(item, c, now)]
