"""
Tests for base character resolution
"""

import pytest

from semantic_geometry.decomposition import (
    DecompositionResolver,
    first_decomposition_target,
    resolve_base,
)
from semantic_geometry.records import CodepointRecord, UcdEntry
from semantic_geometry.ucd_store import InMemoryMetadataStore


def _store(mappings):
    return InMemoryMetadataStore(
        UcdEntry(codepoint=cp, decomposition_mapping=m) for cp, m in mappings.items()
    )


class TestFirstTarget:
    @pytest.mark.parametrize("mapping,expected", [
        ("", None),
        ("#", None),
        ("0041 0300", 0x41),
        ("<compat> 0020 0308", 0x20),
        ("<font>", None),
        ("ZZ 0041", 0x41),
        ("<noBreak> <bad> 00A0", 0xA0),
        ("FFFFFFFF", None),
        ("110000 0041", 0x41),
        ("-41 0042", 0x42),
    ])
    def test_parse(self, mapping, expected):
        assert first_decomposition_target(mapping) == expected


class TestResolveBase:
    def test_chain(self, ucd_store):
        resolver = DecompositionResolver.from_store(ucd_store)
        assert resolver.resolve(0x1D5) == 0x55
        assert resolver.resolve(0xDC) == 0x55
        assert resolver.resolve(0xC0) == 0x41
        assert resolver.resolve(0x41) == 0x41

    def test_compatibility_tag_skipped(self, ucd_store):
        resolver = DecompositionResolver.from_store(ucd_store)
        assert resolver.resolve(0xFB01) == 0x66

    def test_out_of_range_target_ignored(self):
        assert resolve_base(0x41, {0x41: "FFFFFFFF"}.get) == 0x41
        assert resolve_base(0x41, {0x41: "110000 0061"}.get) == 0x61

    def test_three_cycle_terminates(self):
        store = _store({0x100: "0101", 0x101: "0102", 0x102: "0100"})
        resolver = DecompositionResolver.from_store(store)
        assert resolver.resolve(0x100) == 0x102
        assert resolver.resolve(0x101) == 0x100
        assert resolver.resolve(0x102) in {0x100, 0x101, 0x102}

    def test_self_mapping(self):
        store = _store({0x100: "0100"})
        assert DecompositionResolver.from_store(store).resolve(0x100) == 0x100

    def test_zero_target_stops(self):
        store = _store({0x100: "0000 0301"})
        assert DecompositionResolver.from_store(store).resolve(0x100) == 0x100

    def test_depth_limit(self):
        chain = {0x1000 + i: f"{0x1000 + i + 1:04X}" for i in range(30)}
        store = _store(chain)
        assert resolve_base(0x1000, DecompositionResolver.from_store(store).lookup) == 0x1000 + 20
        assert resolve_base(0x1000, DecompositionResolver.from_store(store).lookup, max_depth=3) == 0x1003

    def test_target_outside_store(self):
        store = _store({0x100: "5000"})
        assert DecompositionResolver.from_store(store).resolve(0x100) == 0x5000

    def test_codepoint_missing_from_store(self):
        assert DecompositionResolver.from_store(_store({})).resolve(0x41) == 0x41


class TestResolveAll:
    def test_sets_base_codepoint(self, ucd_store):
        records = [CodepointRecord.from_entry(e) for e in ucd_store]
        resolver = DecompositionResolver.from_records(records)
        changed = resolver.resolve_all(records)
        by_cp = {r.codepoint: r for r in records}
        assert by_cp[0x1D5].base_codepoint == 0x55
        assert by_cp[0x61].base_codepoint == 0x61
        assert changed == sum(1 for r in records if r.base_codepoint != r.codepoint)
        assert changed == 4  # 00C0, 00DC, 01D5, FB01

    def test_records_and_store_agree(self, ucd_store):
        records = [CodepointRecord.from_entry(e) for e in ucd_store]
        from_records = DecompositionResolver.from_records(records)
        from_store = DecompositionResolver.from_store(ucd_store)
        for record in records:
            assert from_records.resolve(record.codepoint) == from_store.resolve(record.codepoint)
