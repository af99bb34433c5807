"""
Codepoint Records and the Codespace Arena
==========================================

Every codepoint 0x0 .. 0x10FFFF owns exactly one record. The arena keeps
them in owned, flat, index-addressable storage:

┌─────────────────────────────────────────────────────────────────────────────┐
│                           CodepointArena                                    │
│                                                                             │
│  kind[cp]   uint8   placeholder classification for the whole codespace      │
│  slot[cp]   int32   index into `records`, or -1 when cp is unassigned       │
│  records    list    CodepointRecord per assigned cp, ascending codepoint    │
└─────────────────────────────────────────────────────────────────────────────┘

Lifecycle:
    1. materialize  - every codepoint gets a placeholder kind (fixed ranges)
    2. overlay      - Metadata Store entries become CodepointRecords
    3. linearize    - base_codepoint / primary_group / script_group / rank
    4. embed        - position / spatial_index / identities
    5. write        - consumed once by the ingestion pipeline

Unassigned codepoints never get a CodepointRecord object in the arena; a
placeholder record is produced on demand by `record(cp)`. This keeps the
~960K unassigned codepoints as a single numpy column instead of objects.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, List, Optional

import numpy as np

from .constants import (
    CODESPACE_SIZE,
    MAX_CODEPOINT,
    SURROGATE_RANGE,
    NONCHARACTER_RANGE,
    PRIVATE_USE_RANGES,
    DEFAULT_BUCKET,
    SCRIPT_SENTINEL,
)
from .errors import InvariantViolation


# =============================================================================
# Placeholder Classification
# =============================================================================

class PlaceholderKind(IntEnum):
    """Default classification of a codepoint before UCD data is overlaid."""
    RESERVED = 0
    SURROGATE = 1
    PRIVATE_USE = 2
    NONCHARACTER = 3

    @property
    def general_category(self) -> str:
        return _PLACEHOLDER_CATEGORY[self]


_PLACEHOLDER_CATEGORY = {
    PlaceholderKind.RESERVED: 'Cn',
    PlaceholderKind.SURROGATE: 'Cs',
    PlaceholderKind.PRIVATE_USE: 'Co',
    PlaceholderKind.NONCHARACTER: 'Cn',
}


def classify_placeholder(cp: int) -> PlaceholderKind:
    """Classify a single codepoint by fixed numeric ranges."""
    if not 0 <= cp <= MAX_CODEPOINT:
        raise ValueError(f"Codepoint out of range: {cp:#x}")
    if SURROGATE_RANGE[0] <= cp <= SURROGATE_RANGE[1]:
        return PlaceholderKind.SURROGATE
    if NONCHARACTER_RANGE[0] <= cp <= NONCHARACTER_RANGE[1] or (cp & 0xFFFE) == 0xFFFE:
        return PlaceholderKind.NONCHARACTER
    for lo, hi in PRIVATE_USE_RANGES:
        if lo <= cp <= hi:
            return PlaceholderKind.PRIVATE_USE
    return PlaceholderKind.RESERVED


def placeholder_kinds() -> np.ndarray:
    """
    Vectorised `classify_placeholder` over the whole codespace.

    Returns:
        uint8 array of length CODESPACE_SIZE holding PlaceholderKind values
    """
    cps = np.arange(CODESPACE_SIZE, dtype=np.uint32)
    kinds = np.full(CODESPACE_SIZE, PlaceholderKind.RESERVED, dtype=np.uint8)
    for lo, hi in PRIVATE_USE_RANGES:
        kinds[lo:hi + 1] = PlaceholderKind.PRIVATE_USE
    kinds[SURROGATE_RANGE[0]:SURROGATE_RANGE[1] + 1] = PlaceholderKind.SURROGATE
    kinds[NONCHARACTER_RANGE[0]:NONCHARACTER_RANGE[1] + 1] = PlaceholderKind.NONCHARACTER
    kinds[(cps & 0xFFFE) == 0xFFFE] = PlaceholderKind.NONCHARACTER
    return kinds


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class UCAWeights:
    """One DUCET collation element."""
    primary: int
    secondary: int
    tertiary: int


@dataclass
class UcdEntry:
    """
    One Metadata Store row: the UCD attributes of an assigned codepoint.

    Case mappings and the decomposition mapping are kept as the raw hex
    strings found in the UCD; interpretation happens downstream.
    """
    codepoint: int
    name: str = ""
    general_category: str = ""
    script: str = ""
    block: str = ""
    age: str = ""
    decomposition_type: str = ""
    decomposition_mapping: str = ""
    combining_class: int = 0
    simple_uppercase: str = ""
    simple_lowercase: str = ""
    simple_titlecase: str = ""
    uca_weights: List[UCAWeights] = field(default_factory=list)
    radical: int = 0
    strokes: int = 0

    @property
    def first_weights(self) -> UCAWeights:
        """First collation element, zero weights when there is none."""
        if self.uca_weights:
            return self.uca_weights[0]
        return UCAWeights(0, 0, 0)


@dataclass
class CodepointRecord(UcdEntry):
    """
    UCD attributes plus everything the pipeline derives for a codepoint.

    Identities:
        content_hash  - position identity (physicality primary key)
        identity_hash - codepoint identity (atom primary key)
    """
    base_codepoint: int = -1
    primary_group: int = DEFAULT_BUCKET
    script_group: int = SCRIPT_SENTINEL
    sequence_index: int = -1
    position: Optional[np.ndarray] = None
    spatial_index: Optional[int] = None
    identity_hash: str = ""
    content_hash: str = ""
    placeholder: Optional[PlaceholderKind] = None

    def __post_init__(self):
        if not 0 <= self.codepoint <= MAX_CODEPOINT:
            raise ValueError(f"Codepoint out of range: {self.codepoint:#x}")
        if self.base_codepoint < 0:
            self.base_codepoint = self.codepoint

    @property
    def assigned(self) -> bool:
        return self.placeholder is None

    @classmethod
    def from_entry(cls, entry: UcdEntry) -> 'CodepointRecord':
        """Overlay a Metadata Store entry (codepoint is never changed)."""
        return cls(
            codepoint=entry.codepoint,
            name=entry.name,
            general_category=entry.general_category,
            script=entry.script,
            block=entry.block,
            age=entry.age,
            decomposition_type=entry.decomposition_type,
            decomposition_mapping=entry.decomposition_mapping,
            combining_class=entry.combining_class,
            simple_uppercase=entry.simple_uppercase,
            simple_lowercase=entry.simple_lowercase,
            simple_titlecase=entry.simple_titlecase,
            uca_weights=list(entry.uca_weights),
            radical=entry.radical,
            strokes=entry.strokes,
        )

    @classmethod
    def placeholder_for(cls, cp: int, kind: Optional[PlaceholderKind] = None) -> 'CodepointRecord':
        kind = classify_placeholder(cp) if kind is None else kind
        return cls(codepoint=cp, general_category=kind.general_category, placeholder=kind)


# =============================================================================
# Arena
# =============================================================================

class CodepointArena:
    """
    Owned storage for the whole codespace.

    The assigned subset lives in `records` (ascending codepoint); the
    Linearizer works on indices into that list, never on shared references
    handed to other threads.
    """

    def __init__(self):
        self.kind = placeholder_kinds()
        self.slot = np.full(CODESPACE_SIZE, -1, dtype=np.int32)
        self.records: List[CodepointRecord] = []

    @classmethod
    def from_entries(cls, entries: Iterable[UcdEntry]) -> 'CodepointArena':
        """Materialize the codespace, then overlay entries in ascending order."""
        arena = cls()
        for entry in sorted(entries, key=lambda e: e.codepoint):
            arena.overlay(entry)
        return arena

    @classmethod
    def from_store(cls, store: Iterable[UcdEntry]) -> 'CodepointArena':
        return cls.from_entries(iter(store))

    def overlay(self, entry: UcdEntry) -> CodepointRecord:
        """
        Overlay one entry onto its placeholder.

        A second entry for the same codepoint replaces the first in place.
        Entries must arrive in ascending codepoint order to keep `records`
        sorted; `from_entries` guarantees that.
        """
        record = CodepointRecord.from_entry(entry)
        cp = record.codepoint
        idx = int(self.slot[cp])
        if idx >= 0:
            self.records[idx] = record
            return record
        if self.records and self.records[-1].codepoint > cp:
            raise ValueError(f"Entries must be overlaid in ascending order (got {cp:#x})")
        self.slot[cp] = len(self.records)
        self.records.append(record)
        return record

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def assigned_count(self) -> int:
        return len(self.records)

    @property
    def unassigned_count(self) -> int:
        return CODESPACE_SIZE - len(self.records)

    @property
    def assigned_mask(self) -> np.ndarray:
        """Dense membership bitset of the assigned subset."""
        return self.slot >= 0

    def is_assigned(self, cp: int) -> bool:
        return bool(self.slot[cp] >= 0)

    def unassigned_codepoints(self) -> np.ndarray:
        """Full range minus the assigned set, ascending."""
        return np.flatnonzero(self.slot < 0).astype(np.uint32)

    def record(self, cp: int) -> CodepointRecord:
        """Record for any codepoint; unassigned ones get a fresh placeholder."""
        if not 0 <= cp <= MAX_CODEPOINT:
            raise ValueError(f"Codepoint out of range: {cp:#x}")
        idx = int(self.slot[cp])
        if idx >= 0:
            return self.records[idx]
        return CodepointRecord.placeholder_for(cp, PlaceholderKind(int(self.kind[cp])))

    def __len__(self) -> int:
        return CODESPACE_SIZE

    def __iter__(self) -> Iterator[CodepointRecord]:
        for cp in range(CODESPACE_SIZE):
            yield self.record(cp)

    def check_coverage(self):
        """Exactly one record per codepoint, assigned records consistent with slots."""
        if self.assigned_count + int(np.count_nonzero(self.slot < 0)) != CODESPACE_SIZE:
            raise InvariantViolation("Arena does not cover the codespace exactly once")
        cps = np.fromiter((r.codepoint for r in self.records), dtype=np.int64,
                          count=len(self.records))
        if len(cps) and np.any(np.diff(cps) <= 0):
            raise InvariantViolation("Assigned records are not unique and ascending")
        if not np.array_equal(self.slot[cps], np.arange(len(cps), dtype=np.int32)):
            raise InvariantViolation("Slot column disagrees with assigned records")
