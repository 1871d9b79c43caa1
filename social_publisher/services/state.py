# social_publisher/services/state.py
"""Lifecycle rules for post groups and their platform posts.

Group status is never set directly from outside this module's tables: the store
checks every compare-and-set against GROUP_TRANSITIONS, and the terminal status
is always recomputed from the children with aggregate_status().
"""
from typing import Dict, FrozenSet, Iterable

from social_publisher.models.post import PostGroupStatus, PlatformPostStatus

G = PostGroupStatus
P = PlatformPostStatus

GROUP_TRANSITIONS: Dict[PostGroupStatus, FrozenSet[PostGroupStatus]] = {
    G.draft: frozenset({G.scheduled}),
    G.scheduled: frozenset({G.draft, G.processing}),
    G.processing: frozenset({G.published, G.partially_published, G.failed}),
    G.published: frozenset(),
    G.partially_published: frozenset(),
    G.failed: frozenset(),
}

PLATFORM_POST_TRANSITIONS: Dict[PlatformPostStatus, FrozenSet[PlatformPostStatus]] = {
    P.pending: frozenset({P.processing}),
    P.processing: frozenset({P.published, P.failed}),
    P.published: frozenset(),
    P.failed: frozenset(),
}

EDITABLE_STATUSES = frozenset({G.draft, G.scheduled})
TERMINAL_STATUSES = frozenset({G.published, G.partially_published, G.failed})


def can_transition_group(current, new) -> bool:
    return PostGroupStatus(new) in GROUP_TRANSITIONS[PostGroupStatus(current)]


def can_transition_platform_post(current, new) -> bool:
    return PlatformPostStatus(new) in PLATFORM_POST_TRANSITIONS[PlatformPostStatus(current)]


def aggregate_status(child_statuses: Iterable) -> PostGroupStatus:
    """Fold terminal child statuses into the group's terminal status."""
    published = failed = 0
    for status in child_statuses:
        status = PlatformPostStatus(status)
        if status == P.published:
            published += 1
        elif status == P.failed:
            failed += 1
        else:
            raise ValueError(f"platform post still {status.value}; cannot aggregate")

    if published == 0 and failed == 0:
        raise ValueError("post group has no platform posts")
    if failed == 0:
        return G.published
    if published == 0:
        return G.failed
    return G.partially_published
