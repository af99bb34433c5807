"""
Semantic Total Order (Linearizer)
=================================

Assigns every assigned codepoint a dense rank (`sequence_index`) under a
fixed multi-key comparison. The first differing key wins:

    1. primary_group     L=1 N=2 P=3 S=4 M=5 Z=6 other=7
    2. script_group      first-seen interning order, empty script = 999
    3. UCA weights       primary, then secondary of the first element
    4. Han               radical, then stroke count
    5. base_codepoint    canonical variants cluster near their root
    6. codepoint         unique, so the order is always total

The result is a permutation (rank -> index into the records list), never a
list of shared references. Script ids depend on iteration order, which is
fixed to ascending codepoint.

RelationGraph
-------------
Case and decomposition relationships are collected into an auxiliary
adjacency structure for inspection. It is NOT consulted by the comparator:
edges never influence ranks.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence
from types import MappingProxyType

import numpy as np

from .constants import CATEGORY_BUCKETS, DEFAULT_BUCKET, SCRIPT_SENTINEL
from .decomposition import first_decomposition_target
from .errors import InvariantViolation
from .records import CodepointRecord


def primary_group(general_category: str) -> int:
    """Bucket from the first letter of the general category."""
    if not general_category:
        return DEFAULT_BUCKET
    return CATEGORY_BUCKETS.get(general_category[0], DEFAULT_BUCKET)


class ScriptInterner:
    """
    Dense script ids in first-seen order.

    The empty script maps to SCRIPT_SENTINEL and does not consume an id.
    """

    def __init__(self, sentinel: int = SCRIPT_SENTINEL):
        self.sentinel = sentinel
        self._ids: Dict[str, int] = {}

    def intern(self, script: str) -> int:
        if not script:
            return self.sentinel
        script_id = self._ids.get(script)
        if script_id is None:
            script_id = len(self._ids)
            self._ids[script] = script_id
        return script_id

    @property
    def ids(self) -> Mapping[str, int]:
        return MappingProxyType(self._ids)

    def __len__(self) -> int:
        return len(self._ids)


# =============================================================================
# Linearizer
# =============================================================================

SORT_KEYS = (
    'primary_group',
    'script_group',
    'uca_primary',
    'uca_secondary',
    'radical',
    'strokes',
    'base_codepoint',
    'codepoint',
)


class Linearizer:
    """
    Ranks assigned records.

    Usage:
        linearizer = Linearizer()
        order = linearizer.linearize(arena.records)
        arena.records[order[0]]       # rank 0
    """

    def __init__(self, interner: Optional[ScriptInterner] = None):
        self.interner = interner or ScriptInterner()

    def classify(self, records: Sequence[CodepointRecord]):
        """
        Single linear pass setting primary_group and script_group.

        Records must be in ascending codepoint order; script ids are assigned
        in that order.
        """
        previous = -1
        for record in records:
            if record.codepoint <= previous:
                raise ValueError("Records must be in ascending codepoint order")
            previous = record.codepoint
            record.primary_group = primary_group(record.general_category)
            record.script_group = self.interner.intern(record.script)

    @staticmethod
    def sort_keys(records: Sequence[CodepointRecord]) -> Dict[str, np.ndarray]:
        """Column per comparison key, aligned with `records`."""
        n = len(records)
        columns = {name: np.zeros(n, dtype=np.int64) for name in SORT_KEYS}
        for i, record in enumerate(records):
            weights = record.first_weights
            columns['primary_group'][i] = record.primary_group
            columns['script_group'][i] = record.script_group
            columns['uca_primary'][i] = weights.primary
            columns['uca_secondary'][i] = weights.secondary
            columns['radical'][i] = record.radical
            columns['strokes'][i] = record.strokes
            columns['base_codepoint'][i] = record.base_codepoint
            columns['codepoint'][i] = record.codepoint
        return columns

    def linearize(self, records: Sequence[CodepointRecord]) -> np.ndarray:
        """
        Rank records and write `sequence_index`.

        Returns:
            Permutation array: order[rank] = index into `records`
        """
        self.classify(records)
        columns = self.sort_keys(records)
        # lexsort treats the LAST key as the most significant
        order = np.lexsort(tuple(columns[name] for name in reversed(SORT_KEYS)))
        for rank, idx in enumerate(order):
            records[idx].sequence_index = rank
        return order


def check_permutation(sequence_indices: np.ndarray, expected: int):
    """Ranks must be exactly 0 .. expected-1, each once."""
    if len(sequence_indices) != expected:
        raise InvariantViolation(
            f"Expected {expected} sequence indices, got {len(sequence_indices)}"
        )
    sequence_indices = np.asarray(sequence_indices, dtype=np.int64)
    if expected and sequence_indices.min() < 0:
        raise InvariantViolation("Unranked record (negative sequence_index)")
    counts = np.bincount(sequence_indices, minlength=expected)
    if len(counts) != expected or np.any(counts != 1):
        raise InvariantViolation("sequence_index values are not a permutation")


# =============================================================================
# Relation Graph (auxiliary)
# =============================================================================

@dataclass(frozen=True)
class RelationEdge:
    """Directed relationship between two codepoints."""
    source: int
    target: int
    kind: str      # 'uppercase', 'lowercase', 'titlecase', 'decomp_<type>', 'base_character'


class RelationGraph:
    """
    Adjacency lists of case and decomposition relationships.

    Debugging / explainability artifact only; ordering never reads it.
    """

    def __init__(self):
        self._edges: Dict[int, List[RelationEdge]] = defaultdict(list)

    def add(self, source: int, target: int, kind: str):
        self._edges[source].append(RelationEdge(source, target, kind))

    def edges_from(self, cp: int) -> List[RelationEdge]:
        return list(self._edges.get(cp, ()))

    @property
    def edge_count(self) -> int:
        return sum(len(v) for v in self._edges.values())

    def __contains__(self, cp: object) -> bool:
        return cp in self._edges


def build_relation_graph(records: Sequence[CodepointRecord]) -> RelationGraph:
    """Edges to other assigned codepoints from case mappings and decompositions."""
    graph = RelationGraph()
    known = {r.codepoint for r in records}

    for record in records:
        cp = record.codepoint
        for mapping, kind in ((record.simple_uppercase, 'uppercase'),
                              (record.simple_lowercase, 'lowercase'),
                              (record.simple_titlecase, 'titlecase')):
            target = first_decomposition_target(mapping)
            if target is not None and target != cp and target in known:
                graph.add(cp, target, kind)

        if record.decomposition_mapping:
            kind = f"decomp_{record.decomposition_type or 'can'}"
            for token in record.decomposition_mapping.split():
                if token.startswith('<'):
                    continue
                try:
                    target = int(token, 16)
                except ValueError:
                    continue
                if target != cp and target in known:
                    graph.add(cp, target, kind)

        base = record.base_codepoint
        if base != cp and base in known:
            graph.add(cp, base, 'base_character')

    return graph
