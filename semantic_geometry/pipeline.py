"""
Parallel Ingestion Orchestrator
===============================

One-shot batch job: Metadata Store in, physicality / atom rows out.

    IDLE → LOADING → LINEARIZING → EMBEDDING → WRITING_ASSIGNED → UNASSIGNED → DONE
                                                        (any stage) → FAILED

Stages:
┌─────────────────────────────────────────────────────────────────────────┐
│ LOADING           materialize the codespace, overlay UCD entries        │
│ LINEARIZING       resolve decompositions, rank assigned codepoints      │
│ EMBEDDING         parallel: position, Hilbert index, identities         │
│ WRITING_ASSIGNED  physicality rows, then atom rows (FK order)           │
│ UNASSIGNED        per batch: parallel compute, physicality, atoms       │
└─────────────────────────────────────────────────────────────────────────┘

Concurrency:
    Workers receive a BlockView: numpy views over a contiguous [start, end)
    slice of the phase buffers. Views of disjoint slices never overlap, so
    no two workers can reach the same row. The only synchronization is the
    join before writing. Writing is single-threaded.

Usage:
    store = load_ucd_directory("data/ucd")
    with DuckDBGeometryStore("geometry.duckdb") as target:
        report = ingest(store, target)
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple
import logging
import math
import os
import sys
import time

import numpy as np

from .constants import CODESPACE_SIZE, UNASSIGNED_BATCH_SIZE
from .decomposition import DecompositionResolver
from .embedding import check_unit_norm, fibonacci_s3
from .errors import InvariantViolation, PipelineStateError
from .geometry_store import AtomRow, GeometryWriter, PhysicalityRow
from .hilbert import HilbertBatch, encode
from .identity import (
    DEFAULT_IDENTITY_CONFIG,
    IdentityConfig,
    codepoint_identity,
    encode_geometry,
    position_identity,
)
from .linearizer import Linearizer, RelationGraph, ScriptInterner, build_relation_graph, check_permutation
from .records import CodepointArena, CodepointRecord
from .ucd_store import MetadataStore

logger = logging.getLogger(__name__)


# =============================================================================
# State machine
# =============================================================================

class Stage(IntEnum):
    IDLE = 0
    LOADING = 1
    LINEARIZING = 2
    EMBEDDING = 3
    WRITING_ASSIGNED = 4
    UNASSIGNED = 5
    DONE = 6
    FAILED = 7


class StageTracker:
    """Forward-only stage transitions with per-stage wall time."""

    def __init__(self):
        self.stage = Stage.IDLE
        self.durations: Dict[str, float] = {}
        self._entered = time.perf_counter()

    def advance(self, stage: Stage):
        if self.stage in (Stage.DONE, Stage.FAILED):
            raise PipelineStateError(f"Pipeline already finished ({self.stage.name})")
        if stage != Stage.FAILED and stage <= self.stage:
            raise PipelineStateError(f"Cannot move from {self.stage.name} to {stage.name}")
        now = time.perf_counter()
        if self.stage != Stage.IDLE:
            self.durations[self.stage.name] = now - self._entered
        self.stage = stage
        self._entered = now

    def fail(self):
        if self.stage not in (Stage.DONE, Stage.FAILED):
            self.advance(Stage.FAILED)


# =============================================================================
# Configuration & report
# =============================================================================

@dataclass
class PipelineConfig:
    """
    Configuration for IngestionPipeline.

    Attributes:
        workers: Compute threads (default: available hardware parallelism)
        unassigned_batch_size: Unassigned codepoints computed and written per batch
        identity: Hash primitive for content identities
        verify_invariants: Check coverage, permutation and unit norm
        build_relations: Also build the auxiliary RelationGraph
    """
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    unassigned_batch_size: int = UNASSIGNED_BATCH_SIZE
    identity: IdentityConfig = DEFAULT_IDENTITY_CONFIG
    verify_invariants: bool = True
    build_relations: bool = False

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.unassigned_batch_size < 1:
            raise ValueError(f"unassigned_batch_size must be >= 1, got {self.unassigned_batch_size}")


@dataclass
class IngestionReport:
    """Summary of one run."""
    assigned: int = 0
    unassigned: int = 0
    physicality_rows: int = 0
    atom_rows: int = 0
    unassigned_batches: int = 0
    decomposed: int = 0
    scripts: int = 0
    durations: Dict[str, float] = field(default_factory=dict)
    stage: Stage = Stage.IDLE

    @property
    def total(self) -> int:
        return self.assigned + self.unassigned

    def summary(self) -> str:
        lines = [
            f"Stage:             {self.stage.name}",
            f"Assigned:          {self.assigned:,}",
            f"Unassigned:        {self.unassigned:,} ({self.unassigned_batches} batches)",
            f"Physicality rows:  {self.physicality_rows:,}",
            f"Atom rows:         {self.atom_rows:,}",
            f"Scripts interned:  {self.scripts}",
            f"Decomposed:        {self.decomposed:,}",
        ]
        for name, seconds in self.durations.items():
            lines.append(f"  {name:<17} {seconds:.2f}s")
        return "\n".join(lines)


# =============================================================================
# Compute buffers
# =============================================================================

def partition(n: int, parts: int) -> List[Tuple[int, int]]:
    """Split [0, n) into at most `parts` contiguous, disjoint, covering ranges."""
    if n <= 0:
        return []
    chunk = math.ceil(n / max(1, parts))
    return [(start, min(start + chunk, n)) for start in range(0, n, chunk)]


@dataclass
class BlockView:
    """
    A worker's slice of a ComputeBuffer.

    Every array here is a numpy view restricted to [start, end); writes land
    in the shared buffer but cannot reach any other worker's rows.
    """
    start: int
    end: int
    ranks: np.ndarray
    codepoints: np.ndarray
    positions: np.ndarray
    hilbert_words: np.ndarray
    hilbert_hex: np.ndarray
    centroids: np.ndarray
    content_ids: np.ndarray
    identity_ids: np.ndarray

    def __len__(self) -> int:
        return self.end - self.start


class ComputeBuffer:
    """Preallocated outputs for one phase (assigned set or one unassigned batch)."""

    def __init__(self, codepoints: np.ndarray, ranks: np.ndarray):
        if len(codepoints) != len(ranks):
            raise ValueError("codepoints and ranks must align")
        n = len(codepoints)
        self.codepoints = np.asarray(codepoints, dtype=np.uint32)
        self.ranks = np.asarray(ranks, dtype=np.int64)
        self.positions = np.zeros((n, 4), dtype=np.float64)
        self.hilbert_words = np.zeros((n, 4), dtype=np.uint32)
        self.hilbert_hex = np.empty(n, dtype=object)
        self.centroids = np.empty(n, dtype=object)
        self.content_ids = np.empty(n, dtype=object)
        self.identity_ids = np.empty(n, dtype=object)

    def __len__(self) -> int:
        return len(self.codepoints)

    def view(self, start: int, end: int) -> BlockView:
        if not 0 <= start <= end <= len(self):
            raise ValueError(f"Bad slice [{start}, {end}) for buffer of {len(self)}")
        return BlockView(
            start=start,
            end=end,
            ranks=self.ranks[start:end],
            codepoints=self.codepoints[start:end],
            positions=self.positions[start:end],
            hilbert_words=self.hilbert_words[start:end],
            hilbert_hex=self.hilbert_hex[start:end],
            centroids=self.centroids[start:end],
            content_ids=self.content_ids[start:end],
            identity_ids=self.identity_ids[start:end],
        )

    @property
    def hilbert(self) -> HilbertBatch:
        return HilbertBatch(self.hilbert_words)

    def physicality_rows(self) -> List[PhysicalityRow]:
        return [
            PhysicalityRow(pid, hx, geom)
            for pid, hx, geom in zip(self.content_ids, self.hilbert_hex, self.centroids)
        ]

    def atom_rows(self) -> List[AtomRow]:
        return [
            AtomRow(aid, int(cp), pid)
            for aid, cp, pid in zip(self.identity_ids, self.codepoints, self.content_ids)
        ]


def compute_block(view: BlockView, total: int, offset: int, identity: IdentityConfig):
    """
    Worker body: fill one BlockView.

    Args:
        view: The worker's own slice
        total: N of the embedding (assigned count, or unassigned count)
        offset: Subtracted from ranks to get the embedding index in [0, N)
        identity: Hash primitive configuration
    """
    if len(view) == 0:
        return
    positions = fibonacci_s3(view.ranks - offset, total)
    view.positions[:] = positions

    batch = encode(positions)
    view.hilbert_words[:] = batch.words
    view.hilbert_hex[:] = batch.hex_strings()

    for k, position in enumerate(positions):
        view.centroids[k] = encode_geometry(position)
        view.content_ids[k] = position_identity(position, identity)
    for k, cp in enumerate(view.codepoints.tolist()):
        view.identity_ids[k] = codepoint_identity(cp, identity)


def compute_parallel(buffer: ComputeBuffer, total: int, offset: int, config: PipelineConfig):
    """Fan out compute_block over disjoint ranges, then join (the only barrier)."""
    ranges = partition(len(buffer), config.workers)
    if not ranges:
        return
    with ThreadPoolExecutor(max_workers=len(ranges)) as executor:
        futures = [
            executor.submit(compute_block, buffer.view(start, end), total, offset, config.identity)
            for start, end in ranges
        ]
        for future in futures:
            future.result()  # Re-raises worker failures


# =============================================================================
# Pipeline
# =============================================================================

class IngestionPipeline:
    """
    Runs the whole ingestion once.

    After `run()`, the arena, the permutation and the auxiliary relation
    graph stay available for inspection.
    """

    def __init__(
        self,
        store: MetadataStore,
        writer: GeometryWriter,
        config: Optional[PipelineConfig] = None,
        interner: Optional[ScriptInterner] = None,
    ):
        self.store = store
        self.writer = writer
        self.config = config or PipelineConfig()
        self.interner = interner or ScriptInterner()
        self.tracker = StageTracker()
        self.report = IngestionReport()

        self.arena: Optional[CodepointArena] = None
        self.order: Optional[np.ndarray] = None
        self.relations: Optional[RelationGraph] = None
        self._unassigned: Optional[np.ndarray] = None

    @property
    def stage(self) -> Stage:
        return self.tracker.stage

    def run(self) -> IngestionReport:
        if self.stage != Stage.IDLE:
            raise PipelineStateError("IngestionPipeline.run() may only be called once")
        try:
            self._load()
            self._linearize()
            buffer = self._embed_assigned()
            self._write_assigned(buffer)
            del buffer
            self._ingest_unassigned()
            self.tracker.advance(Stage.DONE)
        except Exception:
            logger.error("Ingestion failed during %s", self.stage.name)
            self.tracker.fail()
            self.report.stage = self.stage
            self.report.durations = dict(self.tracker.durations)
            raise
        self.report.stage = self.stage
        self.report.durations = dict(self.tracker.durations)
        logger.info("✓ Unicode geometry ingestion complete (%d codepoints)", self.report.total)
        return self.report

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _load(self):
        self.tracker.advance(Stage.LOADING)
        logger.info("[1/5] Materializing codespace and overlaying UCD metadata...")
        self.arena = CodepointArena.from_store(self.store)
        if self.config.verify_invariants:
            self.arena.check_coverage()
        self.report.assigned = self.arena.assigned_count
        self.report.unassigned = self.arena.unassigned_count
        logger.info("  %d assigned, %d unassigned", self.report.assigned, self.report.unassigned)

    def _linearize(self):
        self.tracker.advance(Stage.LINEARIZING)
        logger.info("[2/5] Resolving decompositions and linearizing...")
        records = self.arena.records
        resolver = DecompositionResolver.from_records(records)
        self.report.decomposed = resolver.resolve_all(records)

        self.order = Linearizer(self.interner).linearize(records)
        self.report.scripts = len(self.interner)
        if self.config.verify_invariants:
            check_permutation(np.array([r.sequence_index for r in records], dtype=np.int64),
                              len(records))
        if self.config.build_relations:
            self.relations = build_relation_graph(records)
            logger.info("  relation graph: %d edges", self.relations.edge_count)

    def _embed_assigned(self) -> ComputeBuffer:
        self.tracker.advance(Stage.EMBEDDING)
        logger.info("[3/5] Mapping sequence to S³ + Hilbert (%d workers)...", self.config.workers)
        records = self.arena.records
        n = len(records)
        codepoints = np.fromiter((records[i].codepoint for i in self.order), dtype=np.uint32, count=n)
        buffer = ComputeBuffer(codepoints, np.arange(n, dtype=np.int64))
        if n:
            compute_parallel(buffer, total=n, offset=0, config=self.config)
            if self.config.verify_invariants:
                check_unit_norm(buffer.positions)
        self._store_results(buffer)
        return buffer

    def _store_results(self, buffer: ComputeBuffer):
        """Copy computed attributes back onto the assigned records (rank order)."""
        records = self.arena.records
        hilbert_values = buffer.hilbert.values()
        for rank, idx in enumerate(self.order):
            record: CodepointRecord = records[idx]
            if record.sequence_index != rank:
                raise InvariantViolation(f"Rank mismatch for U+{record.codepoint:04X}")
            record.position = buffer.positions[rank]
            record.spatial_index = hilbert_values[rank]
            record.content_hash = buffer.content_ids[rank]
            record.identity_hash = buffer.identity_ids[rank]

    def _write_batch(self, buffer: ComputeBuffer):
        # Physicality must be fully flushed before the atoms that reference it
        self.report.physicality_rows += self.writer.write_physicality(buffer.physicality_rows())
        self.report.atom_rows += self.writer.write_atoms(buffer.atom_rows())

    def _write_assigned(self, buffer: ComputeBuffer):
        self.tracker.advance(Stage.WRITING_ASSIGNED)
        logger.info("[4/5] Bulk writing %d assigned codepoints (physicality, then atom)...",
                    len(buffer))
        if len(buffer):
            self._write_batch(buffer)

    def _ingest_unassigned(self):
        self.tracker.advance(Stage.UNASSIGNED)
        unassigned = self.arena.unassigned_codepoints()
        self._unassigned = unassigned
        total = len(unassigned)
        offset = self.arena.assigned_count
        batch_size = self.config.unassigned_batch_size
        batches = math.ceil(total / batch_size) if total else 0
        logger.info("[5/5] Embedding and writing %d unassigned codepoints in %d batches...",
                    total, batches)

        for number, start in enumerate(range(0, total, batch_size), 1):
            end = min(start + batch_size, total)
            ranks = np.arange(offset + start, offset + end, dtype=np.int64)
            buffer = ComputeBuffer(unassigned[start:end], ranks)
            compute_parallel(buffer, total=total, offset=offset, config=self.config)
            if self.config.verify_invariants:
                check_unit_norm(buffer.positions)
            self._write_batch(buffer)
            self.report.unassigned_batches += 1
            logger.info("  batch %d/%d: U+%04X..U+%04X", number, batches,
                        int(unassigned[start]), int(unassigned[end - 1]))

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def sequence_index(self, cp: int) -> int:
        """Rank of any codepoint after a run; unassigned ones continue after the assigned."""
        if self.arena is None or self.order is None:
            raise PipelineStateError("Pipeline has not linearized yet")
        if self.arena.is_assigned(cp):
            return self.arena.record(cp).sequence_index
        unassigned = self._unassigned
        if unassigned is None:
            unassigned = self.arena.unassigned_codepoints()
        return self.arena.assigned_count + int(np.searchsorted(unassigned, cp))

    def rank_table(self) -> np.ndarray:
        """sequence_index for every codepoint, indexed by codepoint."""
        if self.arena is None or self.order is None:
            raise PipelineStateError("Pipeline has not linearized yet")
        table = np.empty(CODESPACE_SIZE, dtype=np.int64)
        records = self.arena.records
        for rank, idx in enumerate(self.order):
            table[records[idx].codepoint] = rank
        unassigned = self.arena.unassigned_codepoints()
        table[unassigned] = self.arena.assigned_count + np.arange(len(unassigned))
        return table


def ingest(store: MetadataStore, writer: GeometryWriter,
           config: Optional[PipelineConfig] = None) -> IngestionReport:
    """Run the pipeline once: complete, or raise."""
    return IngestionPipeline(store, writer, config).run()


if __name__ == "__main__":
    from .geometry_store import DuckDBGeometryStore
    from .ucd_reader import load_ucd_directory

    if len(sys.argv) < 2:
        print("usage: python -m semantic_geometry.pipeline UCD_DIR [DB_PATH]")
        sys.exit(2)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    ucd_store = load_ucd_directory(sys.argv[1])
    db_path = sys.argv[2] if len(sys.argv) > 2 else ":memory:"

    with DuckDBGeometryStore(db_path) as target:
        result = ingest(ucd_store, target)
        print(result.summary())
        print(f"Stored rows: {target.counts()}")
