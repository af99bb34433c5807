"""
Decomposition Resolver: trace a codepoint to its base character.

    U+01D5 (Ǖ) -> 00DC 0304 -> U+00DC (Ü) -> 0055 0308 -> U+0055 (U)

Only the first codepoint of each mapping is followed. Compatibility tags
(`<compat>`, `<font>`, ...) are skipped, and so are malformed or out-of-range tokens.
Resolution stops at the last distinct codepoint reached when the chain
ends, leaves the store, or comes back to a codepoint already visited.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, Optional

from .constants import MAX_CODEPOINT, MAX_DECOMPOSITION_DEPTH
from .records import CodepointRecord
from .ucd_store import MetadataStore

# cp -> decomposition mapping string, None when the cp is not in the store
MappingLookup = Callable[[int], Optional[str]]


def first_decomposition_target(mapping: str) -> Optional[int]:
    """
    First hex codepoint of a decomposition mapping.

    Args:
        mapping: Raw mapping, e.g. "<compat> 0020 0308" or "0041 0300"

    Returns:
        Parsed codepoint, or None when the mapping names no codepoint
    """
    if not mapping or mapping == '#':
        return None
    for token in mapping.split():
        if token.startswith('<'):
            continue
        try:
            value = int(token, 16)
        except ValueError:
            continue
        if 0 <= value <= MAX_CODEPOINT:
            return value
    return None


def resolve_base(cp: int, lookup: MappingLookup,
                 max_depth: int = MAX_DECOMPOSITION_DEPTH) -> int:
    """
    Follow first decomposition targets until the chain stops.

    Cycle-safe: a codepoint seen twice ends the walk at the last distinct
    value reached, and the walk never exceeds `max_depth` steps.
    """
    current = cp
    visited = {cp}
    for _ in range(max_depth):
        mapping = lookup(current)
        if mapping is None:
            return current
        target = first_decomposition_target(mapping)
        if not target or target == current or target in visited:
            return current
        visited.add(target)
        current = target
    return current


class DecompositionResolver:
    """Memoising resolver over a Metadata Store view."""

    def __init__(self, lookup: MappingLookup, max_depth: int = MAX_DECOMPOSITION_DEPTH):
        self.lookup = lookup
        self.max_depth = max_depth
        self._cache: Dict[int, int] = {}

    @classmethod
    def from_store(cls, store: MetadataStore, **kwargs) -> 'DecompositionResolver':
        def lookup(cp: int) -> Optional[str]:
            entry = store.get(cp)
            return entry.decomposition_mapping if entry is not None else None
        return cls(lookup, **kwargs)

    @classmethod
    def from_records(cls, records: Iterable[CodepointRecord], **kwargs) -> 'DecompositionResolver':
        """Resolver over already-overlaid records (no store round trips)."""
        mappings = {r.codepoint: r.decomposition_mapping for r in records}
        return cls(mappings.get, **kwargs)

    def resolve(self, cp: int) -> int:
        base = self._cache.get(cp)
        if base is None:
            base = resolve_base(cp, self.lookup, self.max_depth)
            self._cache[cp] = base
        return base

    def resolve_all(self, records: Iterable[CodepointRecord]) -> int:
        """
        Set `base_codepoint` on every record.

        Returns:
            Number of records whose base differs from their own codepoint
        """
        changed = 0
        for record in records:
            record.base_codepoint = self.resolve(record.codepoint)
            if record.base_codepoint != record.codepoint:
                changed += 1
        return changed
