"""
Metadata Store: keyed access to UCD entries
============================================

The pipeline treats UCD metadata as a key-value source keyed by codepoint
that can also be iterated in a stable order. Iteration is always ascending
codepoint: script ids are interned in iteration order, so any other order
would change the linearization.

Backends:
- InMemoryMetadataStore: dict-backed, filled by the UCD loader or tests
- DuckDBMetadataStore:   persistent `ucd_codepoints` table

Usage:
    store = DuckDBMetadataStore("ucd.duckdb")
    store.save(load_ucd_directory("data/ucd"))
    entry = store.get(0x41)
    for entry in store:          # ascending codepoint
        ...
"""

from __future__ import annotations
from typing import Dict, Iterable, Iterator, Optional, Protocol, runtime_checkable
import json

import duckdb
import pyarrow as pa

from .records import UcdEntry, UCAWeights


@runtime_checkable
class MetadataStore(Protocol):
    """Read contract the pipeline needs from a UCD source."""

    def get(self, cp: int) -> Optional[UcdEntry]: ...

    def __iter__(self) -> Iterator[UcdEntry]: ...

    def __len__(self) -> int: ...

    def __contains__(self, cp: object) -> bool: ...


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryMetadataStore:
    """Dict-backed store; iteration sorts by codepoint."""

    def __init__(self, entries: Optional[Iterable[UcdEntry]] = None):
        self._entries: Dict[int, UcdEntry] = {}
        for entry in entries or ():
            self.put(entry)

    def put(self, entry: UcdEntry):
        self._entries[entry.codepoint] = entry

    def get(self, cp: int) -> Optional[UcdEntry]:
        return self._entries.get(cp)

    def __iter__(self) -> Iterator[UcdEntry]:
        for cp in sorted(self._entries):
            yield self._entries[cp]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cp: object) -> bool:
        return cp in self._entries

    def __repr__(self) -> str:
        return f"InMemoryMetadataStore({len(self)} entries)"


# =============================================================================
# DuckDB backend
# =============================================================================

_COLUMNS = (
    'codepoint', 'name', 'general_category', 'script', 'block', 'age',
    'decomposition_type', 'decomposition_mapping', 'combining_class',
    'simple_uppercase', 'simple_lowercase', 'simple_titlecase',
    'uca_weights', 'radical', 'strokes',
)

_SCHEMA = pa.schema(
    [pa.field('codepoint', pa.int32())]
    + [pa.field(name, pa.string()) for name in _COLUMNS[1:8]]
    + [pa.field('combining_class', pa.int32())]
    + [pa.field(name, pa.string()) for name in _COLUMNS[9:13]]
    + [pa.field('radical', pa.int32()), pa.field('strokes', pa.int32())]
)


class DuckDBMetadataStore:
    """
    DuckDB-backed Metadata Store.

    UCA weights are stored as a JSON list of [primary, secondary, tertiary]
    triples; everything else maps one attribute to one column.
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Args:
            db_path: Path to database file, or ":memory:" for in-memory
        """
        self.db_path = db_path
        self.conn = duckdb.connect(db_path)
        self._init_schema()

    def _init_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS ucd_codepoints (
                codepoint INTEGER PRIMARY KEY,
                name VARCHAR,
                general_category VARCHAR,
                script VARCHAR,
                block VARCHAR,
                age VARCHAR,
                decomposition_type VARCHAR,
                decomposition_mapping VARCHAR,
                combining_class INTEGER,
                simple_uppercase VARCHAR,
                simple_lowercase VARCHAR,
                simple_titlecase VARCHAR,
                uca_weights VARCHAR,
                radical INTEGER,
                strokes INTEGER
            )
        """)

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_row(entry: UcdEntry) -> list:
        weights = json.dumps([[w.primary, w.secondary, w.tertiary] for w in entry.uca_weights])
        return [
            entry.codepoint, entry.name, entry.general_category, entry.script,
            entry.block, entry.age, entry.decomposition_type,
            entry.decomposition_mapping, entry.combining_class,
            entry.simple_uppercase, entry.simple_lowercase, entry.simple_titlecase,
            weights, entry.radical, entry.strokes,
        ]

    @staticmethod
    def _from_row(row) -> UcdEntry:
        values = dict(zip(_COLUMNS, row))
        raw_weights = values.pop('uca_weights')
        weights = [UCAWeights(*w) for w in json.loads(raw_weights)] if raw_weights else []
        for key, value in values.items():
            if value is None:
                values[key] = 0 if key in ('combining_class', 'radical', 'strokes') else ""
        return UcdEntry(uca_weights=weights, **values)

    # -------------------------------------------------------------------------
    # Store operations
    # -------------------------------------------------------------------------

    def save(self, entries: Iterable[UcdEntry]) -> int:
        """
        Upsert entries with one INSERT ... SELECT over an Arrow batch.

        A codepoint repeated in `entries` keeps its last entry.

        Returns:
            Number of entries written
        """
        latest = {e.codepoint: e for e in entries}
        if not latest:
            return 0
        batch = pa.Table.from_pylist(
            [dict(zip(_COLUMNS, self._to_row(e))) for e in latest.values()],
            schema=_SCHEMA,
        )
        self.conn.register("ucd_batch", batch)
        try:
            self.conn.execute("BEGIN TRANSACTION")
            self.conn.execute(
                f"INSERT OR REPLACE INTO ucd_codepoints ({', '.join(_COLUMNS)}) "
                f"SELECT {', '.join(_COLUMNS)} FROM ucd_batch"
            )
            self.conn.execute("COMMIT")
        except duckdb.Error:
            self.conn.execute("ROLLBACK")
            raise
        finally:
            self.conn.unregister("ucd_batch")
        return len(latest)

    def get(self, cp: int) -> Optional[UcdEntry]:
        result = self.conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM ucd_codepoints WHERE codepoint = ?", [cp]
        ).fetchone()
        return self._from_row(result) if result else None

    def __iter__(self) -> Iterator[UcdEntry]:
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT {', '.join(_COLUMNS)} FROM ucd_codepoints ORDER BY codepoint")
        try:
            while True:
                rows = cursor.fetchmany(10_000)
                if not rows:
                    break
                for row in rows:
                    yield self._from_row(row)
        finally:
            cursor.close()

    def __len__(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM ucd_codepoints").fetchone()[0]

    def __contains__(self, cp: object) -> bool:
        if not isinstance(cp, int):
            return False
        result = self.conn.execute(
            "SELECT 1 FROM ucd_codepoints WHERE codepoint = ?", [cp]
        ).fetchone()
        return result is not None

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __repr__(self) -> str:
        return f"DuckDBMetadataStore({self.db_path!r})"
