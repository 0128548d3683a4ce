"""
Visibility filter

A node is visible at instant ``t`` when it is active and ``t`` falls in its
``[display_at, hide_at)`` window. Callers capture ``t`` once per request and
pass the same value for every node.
"""
from datetime import datetime, UTC
from typing import Iterable, List, Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware UTC datetime; naive values are taken to be UTC already"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_storage(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC datetime for the database columns"""
    value = as_utc(value)
    return value.replace(tzinfo=None) if value is not None else None


def utc_now() -> datetime:
    return datetime.now(UTC)


def is_visible(node, at_time: datetime) -> bool:
    """display_at is inclusive, hide_at is exclusive"""
    if not node.is_active:
        return False
    at_time = as_utc(at_time)
    display_at = as_utc(node.display_at)
    if display_at is not None and display_at > at_time:
        return False
    hide_at = as_utc(node.hide_at)
    if hide_at is not None and hide_at <= at_time:
        return False
    return True


def filter_visible(nodes: Iterable, at_time: datetime) -> List:
    """Per-node filter, ancestors are not consulted"""
    return [node for node in nodes if is_visible(node, at_time)]
