# aggregator.py
# Folds fetched delegator sets into cache snapshots; the inverse map is always derived

from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, Mapping

from .models import CacheSnapshot


def invert(mapping: Mapping[str, Iterable[str]]) -> Dict[str, FrozenSet[str]]:
    """Swap keys and members: validator -> delegators becomes delegator -> validators and back."""
    inverted: Dict[str, set] = defaultdict(set)
    for key, members in mapping.items():
        for member in members:
            inverted[member].add(key)
    return {member: frozenset(keys) for member, keys in inverted.items()}


def rebuild(
    forward: Mapping[str, Iterable[str]],
    now: int,
    heights: Mapping[str, int] | None = None,
) -> CacheSnapshot:
    """
    Snapshot for a full refresh. Validators missing from `forward` disappear
    from both maps, so nothing stale is carried over.
    """
    frozen = {
        validator: frozenset(delegators)
        for validator, delegators in forward.items()
        if delegators
    }
    return CacheSnapshot(
        timestamp=now,
        forward=frozen,
        inverse=invert(frozen),
        heights=dict(heights or {}),
    )


def merge_validator(
    snapshot: CacheSnapshot,
    validator: str,
    delegators: Iterable[str],
    now: int,
    height: int | None = None,
) -> CacheSnapshot:
    """Replace one validator's delegators and patch the inverse map to match."""
    new = frozenset(delegators)
    old = snapshot.forward.get(validator, frozenset())

    forward = dict(snapshot.forward)
    if new:
        forward[validator] = new
    else:
        forward.pop(validator, None)

    inverse = dict(snapshot.inverse)
    for delegator in old - new:
        remaining = inverse.get(delegator, frozenset()) - {validator}
        if remaining:
            inverse[delegator] = remaining
        else:
            inverse.pop(delegator, None)
    for delegator in new - old:
        inverse[delegator] = inverse.get(delegator, frozenset()) | {validator}

    heights = dict(snapshot.heights)
    if height is not None:
        heights[validator] = height

    return CacheSnapshot(
        timestamp=now, forward=forward, inverse=inverse, heights=heights
    )


def is_consistent(snapshot: CacheSnapshot) -> bool:
    """True when the inverse map is exactly the inverse of the forward map."""
    return invert(snapshot.forward) == snapshot.inverse
