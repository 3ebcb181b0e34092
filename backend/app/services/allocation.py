"""
Allocation engine: which booking target receives a lead.

This module is pure. It never reads or writes the store; the caller loads
the active targets and the recent allocation events, and is responsible for
bumping the chosen target's counter atomically.

MODES
=====

single       default target if it is in the pool, else first by name
sticky       FNV-1a hash of the viewer id into the pool sorted by id
round_robin  lowest count in the recent allocation sample wins
weighted     round_robin over a pool where each target has clamp(weight, 1, 100) slots

Round-robin without a cursor:
  We never store "whose turn is it". Instead the newest N allocation events
  for the creator are counted per target and the least-used target wins, ties
  going to the earliest position in the pool. Adding or removing a target
  self-corrects within one sample window.

  In the weighted pool a target owns `w` slots. Its recent events are spread
  evenly over those slots (slot k carries count // w, plus one if
  k < count % w) and the least-loaded slot wins. With every weight at 1 this
  is exactly the plain count; with weights [1, 2] nine picks land 3 and 6.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
MIN_WEIGHT = 1
MAX_WEIGHT = 100


class RoutingMode(str, Enum):
    SINGLE = "single"
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"
    STICKY = "sticky"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RoutingMode":
        """Unknown or missing modes behave as single."""
        try:
            return cls(value) if value else cls.SINGLE
        except ValueError:
            return cls.SINGLE


class Target(Protocol):
    id: str
    name: Optional[str]
    weight: Optional[int]


@dataclass(frozen=True)
class Slot:
    target: Target
    ordinal: int  # index of this slot among the target's replicas
    replicas: int


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a over UTF-8 bytes. Stable across processes and languages."""
    h = FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def clamp_weight(weight: Optional[int]) -> int:
    if weight is None:
        return MIN_WEIGHT
    return max(MIN_WEIGHT, min(MAX_WEIGHT, int(weight)))


def pool_order(targets: Iterable[Target]) -> list:
    """The fixed order ties are broken by."""
    return sorted(targets, key=lambda t: (t.name or "", t.id))


def expand_by_weight(targets: Sequence[Target]) -> list[Slot]:
    slots: list[Slot] = []
    for target in targets:
        replicas = clamp_weight(target.weight)
        for ordinal in range(replicas):
            slots.append(Slot(target=target, ordinal=ordinal, replicas=replicas))
    return slots


def _slot_load(slot: Slot, recent_count: int) -> int:
    base, extra = divmod(recent_count, slot.replicas)
    return base + (1 if slot.ordinal < extra else 0)


def pick_least_recent(slots: Sequence[Slot], recent_target_ids: Iterable[Optional[str]]) -> Optional[Target]:
    if not slots:
        return None
    counts = Counter(tid for tid in recent_target_ids if tid)
    best: Optional[Slot] = None
    best_load = None
    for slot in slots:
        load = _slot_load(slot, counts.get(slot.target.id, 0))
        if best_load is None or load < best_load:
            best, best_load = slot, load
    return best.target


def pick(
    creator_id: str,
    viewer_id: Optional[str],
    targets: Sequence[Target],
    mode: RoutingMode,
    default_target_id: Optional[str] = None,
    recent_target_ids: Iterable[Optional[str]] = (),
) -> Optional[Target]:
    """
    Choose one destination for a click on `creator_id`'s booking CTA.

    Args:
        creator_id: Creator whose pool is being routed (used by callers for
            sampling; kept in the signature so picks are self-describing in logs)
        viewer_id: Logged-in viewer, required for sticky routing
        targets: Active targets for the creator
        mode: Routing policy
        default_target_id: Preferred target for single mode
        recent_target_ids: Target ids of the newest allocation events

    Returns:
        The chosen target, or None when there are no targets
    """
    if not targets:
        return None

    ordered = pool_order(targets)

    if mode is RoutingMode.SINGLE:
        if default_target_id:
            for target in ordered:
                if target.id == default_target_id:
                    return target
        return ordered[0]

    if mode is RoutingMode.STICKY and viewer_id:
        by_id = sorted(targets, key=lambda t: t.id)
        return by_id[fnv1a_32(viewer_id) % len(by_id)]

    if mode is RoutingMode.WEIGHTED:
        slots = expand_by_weight(ordered)
    else:
        # round_robin, and sticky without a viewer
        slots = [Slot(target=t, ordinal=0, replicas=1) for t in ordered]

    return pick_least_recent(slots, recent_target_ids)


def depends_on_history(mode: RoutingMode, viewer_id: Optional[str]) -> bool:
    """Whether the pick reads allocation history (and so needs the version CAS)."""
    if mode is RoutingMode.SINGLE:
        return False
    if mode is RoutingMode.STICKY and viewer_id:
        return False
    return True
