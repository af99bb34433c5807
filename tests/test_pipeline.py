"""
Tests for the ingestion pipeline

The full-codespace runs use the synthetic UCD directory from conftest: a
few dozen assigned codepoints, everything else unassigned.
"""

import math

import numpy as np
import pytest

from semantic_geometry.constants import CODESPACE_SIZE
from semantic_geometry.errors import PipelineStateError, StoreWriteError
from semantic_geometry.geometry_store import DuckDBGeometryStore, RecordingWriter
from semantic_geometry.identity import codepoint_identity
from semantic_geometry.pipeline import (
    ComputeBuffer,
    IngestionPipeline,
    PipelineConfig,
    Stage,
    StageTracker,
    compute_block,
    compute_parallel,
    ingest,
    partition,
)
from semantic_geometry.ucd_reader import load_ucd_directory


class TestPartition:
    def test_examples(self):
        assert partition(10, 3) == [(0, 4), (4, 8), (8, 10)]
        assert partition(3, 8) == [(0, 1), (1, 2), (2, 3)]
        assert partition(5, 1) == [(0, 5)]
        assert partition(0, 4) == []

    @pytest.mark.parametrize("n,parts", [(1, 1), (7, 2), (100, 7), (100_000, 16), (13, 13)])
    def test_disjoint_and_covering(self, n, parts):
        ranges = partition(n, parts)
        assert len(ranges) <= parts
        assert ranges[0][0] == 0
        assert ranges[-1][1] == n
        for (_, end), (start, _) in zip(ranges, ranges[1:]):
            assert end == start
        assert all(start < end for start, end in ranges)


class TestStageTracker:
    def test_forward_only(self):
        tracker = StageTracker()
        tracker.advance(Stage.LOADING)
        tracker.advance(Stage.EMBEDDING)
        with pytest.raises(PipelineStateError):
            tracker.advance(Stage.LINEARIZING)
        with pytest.raises(PipelineStateError):
            tracker.advance(Stage.EMBEDDING)
        assert 'LOADING' in tracker.durations

    def test_terminal_stages(self):
        tracker = StageTracker()
        tracker.advance(Stage.LOADING)
        tracker.fail()
        assert tracker.stage == Stage.FAILED
        with pytest.raises(PipelineStateError):
            tracker.advance(Stage.DONE)
        tracker.fail()  # already failed
        assert tracker.stage == Stage.FAILED


class TestConfig:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.workers >= 1
        assert config.unassigned_batch_size == 100_000
        assert config.verify_invariants

    def test_invalid(self):
        with pytest.raises(ValueError):
            PipelineConfig(workers=0)
        with pytest.raises(ValueError):
            PipelineConfig(unassigned_batch_size=0)


class TestComputeBlock:
    def _buffer(self, n=1000):
        return ComputeBuffer(np.arange(0x100, 0x100 + n, dtype=np.uint32), np.arange(n))

    def test_partitioned_equals_single(self):
        single = self._buffer()
        compute_block(single.view(0, len(single)), 1000, 0, PipelineConfig().identity)
        split = self._buffer()
        compute_parallel(split, 1000, 0, PipelineConfig(workers=7))
        assert np.array_equal(single.positions, split.positions)
        assert np.array_equal(single.hilbert_words, split.hilbert_words)
        assert list(single.content_ids) == list(split.content_ids)
        assert list(single.identity_ids) == list(split.identity_ids)
        assert list(single.centroids) == list(split.centroids)

    def test_view_writes_only_its_slice(self):
        buffer = self._buffer(10)
        compute_block(buffer.view(3, 6), 10, 0, PipelineConfig().identity)
        assert np.all(buffer.positions[:3] == 0) and np.all(buffer.positions[6:] == 0)
        assert np.all(np.linalg.norm(buffer.positions[3:6], axis=1) > 0.99)
        assert buffer.content_ids[2] is None and buffer.content_ids[6] is None

    def test_offset(self):
        buffer = ComputeBuffer(np.array([0xE000, 0xE001], dtype=np.uint32), np.array([50, 51]))
        compute_parallel(buffer, total=10, offset=50, config=PipelineConfig(workers=2))
        reference = ComputeBuffer(np.array([0xE000, 0xE001], dtype=np.uint32), np.array([0, 1]))
        compute_parallel(reference, total=10, offset=0, config=PipelineConfig(workers=1))
        assert np.array_equal(buffer.positions, reference.positions)

    def test_rows(self):
        buffer = self._buffer(4)
        compute_parallel(buffer, 4, 0, PipelineConfig(workers=2))
        physicality = buffer.physicality_rows()
        atoms = buffer.atom_rows()
        assert [a.codepoint for a in atoms] == [0x100, 0x101, 0x102, 0x103]
        assert [a.physicality_id for a in atoms] == [p.id for p in physicality]
        assert atoms[0].id == codepoint_identity(0x100)
        assert all(len(p.hilbert) == 32 and len(p.centroid) == 37 for p in physicality)

    def test_bad_view(self):
        with pytest.raises(ValueError):
            self._buffer(4).view(2, 5)


# =============================================================================
# Full codespace
# =============================================================================

@pytest.fixture(scope="module")
def full_run(ucd_dir, digest_writer_class):
    store = load_ucd_directory(ucd_dir)
    writer = digest_writer_class()
    pipeline = IngestionPipeline(store, writer, PipelineConfig(build_relations=True))
    report = pipeline.run()
    return store, pipeline, writer, report


class TestFullRun:
    def test_report(self, full_run):
        store, pipeline, _, report = full_run
        assert report.stage == Stage.DONE
        assert pipeline.stage == Stage.DONE
        assert report.assigned == len(store)
        assert report.total == CODESPACE_SIZE
        assert report.atom_rows == CODESPACE_SIZE
        assert report.unassigned_batches == math.ceil(report.unassigned / 100_000)
        assert report.scripts == 5
        assert report.decomposed == 4
        assert 'EMBEDDING' in report.durations
        assert "Atom rows" in report.summary()

    def test_every_codepoint_written_once(self, full_run):
        _, _, writer, _ = full_run
        assert np.all(writer.atom_counts == 1)

    def test_physicality_before_atoms(self, full_run):
        _, _, writer, report = full_run
        kinds = [kind for kind, _ in writer.calls]
        assert kinds == ['physicality', 'atom'] * (1 + report.unassigned_batches)
        for (_, phys), (_, atoms) in zip(writer.calls[::2], writer.calls[1::2]):
            assert phys == atoms

    def test_unit_norm(self, full_run):
        _, _, writer, _ = full_run
        assert writer.max_norm_error < 1e-6

    def test_rank_table_is_a_permutation(self, full_run):
        _, pipeline, _, _ = full_run
        table = pipeline.rank_table()
        assert np.array_equal(np.sort(table), np.arange(CODESPACE_SIZE))

    def test_unassigned_continue_after_assigned(self, full_run):
        store, pipeline, _, _ = full_run
        assigned = len(store)
        assert pipeline.sequence_index(0x0000) == assigned
        e000 = pipeline.sequence_index(0xE000)
        assert e000 >= assigned
        assert pipeline.sequence_index(0xE001) == e000 + 1
        assert pipeline.sequence_index(0x41) < assigned

    def test_records_carry_results(self, full_run):
        _, pipeline, _, _ = full_run
        a = pipeline.arena.record(0x41)
        assert a.identity_hash == codepoint_identity(0x41)
        assert a.content_hash
        assert a.spatial_index is not None
        assert abs(np.linalg.norm(a.position) - 1.0) < 1e-9

    def test_case_pair_close_on_sphere(self, full_run):
        _, pipeline, _, _ = full_run
        upper = pipeline.arena.record(0x41).position
        lower = pipeline.arena.record(0x61).position
        space = pipeline.arena.record(0x20).position
        assert np.linalg.norm(upper - lower) < np.linalg.norm(upper - space)

    def test_relation_graph(self, full_run):
        _, pipeline, _, _ = full_run
        assert pipeline.relations is not None
        assert pipeline.relations.edge_count > 0

    def test_run_once(self, full_run):
        _, pipeline, _, _ = full_run
        with pytest.raises(PipelineStateError):
            pipeline.run()

    def test_deterministic_across_worker_counts(self, full_run, ucd_dir, digest_writer):
        _, _, writer, _ = full_run
        again = digest_writer
        ingest(load_ucd_directory(ucd_dir), again, PipelineConfig(workers=3))
        assert again.hexdigest() == writer.hexdigest()


# =============================================================================
# Failures
# =============================================================================

class FailingWriter(RecordingWriter):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    def write_physicality(self, rows):
        if self.fail_on == 'physicality':
            raise StoreWriteError("store unavailable")
        return super().write_physicality(rows)

    def write_atoms(self, rows):
        if self.fail_on == 'atom':
            raise StoreWriteError("constraint violation")
        return super().write_atoms(rows)


class TestFailures:
    def test_physicality_failure_writes_no_atoms(self, ucd_store):
        writer = FailingWriter('physicality')
        pipeline = IngestionPipeline(ucd_store, writer)
        with pytest.raises(StoreWriteError):
            pipeline.run()
        assert pipeline.stage == Stage.FAILED
        assert pipeline.report.stage == Stage.FAILED
        assert writer.atoms == {}
        assert 'LOADING' in pipeline.report.durations
        assert 'WRITING_ASSIGNED' in pipeline.report.durations

    def test_atom_failure_stops_before_unassigned(self, ucd_store):
        writer = FailingWriter('atom')
        pipeline = IngestionPipeline(ucd_store, writer)
        with pytest.raises(StoreWriteError):
            pipeline.run()
        assert pipeline.stage == Stage.FAILED
        assert len(writer.physicality) == len(ucd_store)
        assert pipeline.report.unassigned_batches == 0

    def test_failed_pipeline_cannot_rerun(self, ucd_store):
        pipeline = IngestionPipeline(ucd_store, FailingWriter('physicality'))
        with pytest.raises(StoreWriteError):
            pipeline.run()
        with pytest.raises(PipelineStateError):
            pipeline.run()


class TestDuckDBTarget:
    def test_assigned_phase_lands_in_duckdb(self, ucd_store):
        with DuckDBGeometryStore() as target:
            pipeline = IngestionPipeline(ucd_store, target, PipelineConfig(workers=2))
            pipeline._load()
            pipeline._linearize()
            buffer = pipeline._embed_assigned()
            pipeline._write_assigned(buffer)
            assert target.counts() == {'physicality': len(ucd_store), 'atom': len(ucd_store)}
            row = target.atom_for_codepoint(0x41)
            record = pipeline.arena.record(0x41)
            assert row['physicality_id'] == record.content_hash
            assert int(row['hilbert'], 16) == record.spatial_index

    def test_full_ingest_lands_in_duckdb(self, ucd_dir, tmp_path):
        path = str(tmp_path / "geometry.duckdb")
        with DuckDBGeometryStore(path) as target:
            report = ingest(load_ucd_directory(ucd_dir), target, PipelineConfig(workers=4))
            assert report.stage == Stage.DONE
            assert report.atom_rows == CODESPACE_SIZE
            assert target.counts() == {'physicality': report.physicality_rows,
                                       'atom': CODESPACE_SIZE}
            assert target.atom_for_codepoint(0x10FFFF)['id'] == codepoint_identity(0x10FFFF)
        with DuckDBGeometryStore(path) as target:
            assert target.counts()['atom'] == CODESPACE_SIZE
