"""
Geometry Store: relational target of the ingestion pipeline
============================================================

Two relations, written physicality-first:

┌─────────────────────────────────────────────────────────────────────────────┐
│  physicality                                                                │
│  id (position identity) PK → {hilbert (32 hex digits), centroid (EWKB)}     │
│  Content-addressed: identical positions share one row                       │
├─────────────────────────────────────────────────────────────────────────────┤
│  atom                                                                       │
│  id (codepoint identity) PK → {codepoint, physicality_id FK}                │
└─────────────────────────────────────────────────────────────────────────────┘

Writers:
- DuckDBGeometryStore: set-based append (Arrow batch, INSERT ... SELECT)
                      inside one transaction per call
- RecordingWriter:     in-memory, keeps the call log (tests, dry runs)

Both refuse an atom whose physicality row has not been written.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple, runtime_checkable

import duckdb
import pyarrow as pa

from .errors import StoreWriteError


class PhysicalityRow(NamedTuple):
    id: str
    hilbert: str
    centroid: bytes


class AtomRow(NamedTuple):
    id: str
    codepoint: int
    physicality_id: str


@runtime_checkable
class GeometryWriter(Protocol):
    """Write contract: physicality rows of a batch before its atom rows."""

    def write_physicality(self, rows: Sequence[PhysicalityRow]) -> int: ...

    def write_atoms(self, rows: Sequence[AtomRow]) -> int: ...


# Column layout of a batch handed to DuckDB as an Arrow relation
_BATCH_RELATION = "batch_rel"

_PHYSICALITY_SCHEMA = pa.schema([
    pa.field("id", pa.string()),
    pa.field("hilbert", pa.string()),
    pa.field("centroid", pa.binary()),
])

_ATOM_SCHEMA = pa.schema([
    pa.field("id", pa.string()),
    pa.field("codepoint", pa.int32()),
    pa.field("physicality_id", pa.string()),
])


def _to_arrow(rows: Sequence[tuple], schema: pa.Schema) -> pa.Table:
    columns = list(zip(*rows)) if rows else [() for _ in schema]
    arrays = [pa.array(column, type=f.type) for column, f in zip(columns, schema)]
    return pa.Table.from_arrays(arrays, schema=schema)


def _physicality_batch(rows: Sequence[PhysicalityRow]) -> pa.Table:
    return _to_arrow(rows, _PHYSICALITY_SCHEMA)


def _atom_batch(rows: Sequence[AtomRow]) -> pa.Table:
    return _to_arrow(rows, _ATOM_SCHEMA)


# =============================================================================
# DuckDB
# =============================================================================

class DuckDBGeometryStore:
    """
    DuckDB-backed physicality / atom tables.

    The foreign key from atom to physicality is declared in the schema, so
    writing atoms out of order fails inside DuckDB as well as here.
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Args:
            db_path: Path to database file, or ":memory:" for in-memory
        """
        self.db_path = db_path
        try:
            self.conn = duckdb.connect(db_path)
        except duckdb.Error as e:
            raise StoreWriteError(f"Cannot open geometry store {db_path!r}: {e}") from e
        self._init_schema()

    def _init_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS physicality (
                id VARCHAR PRIMARY KEY,
                hilbert VARCHAR NOT NULL,
                centroid BLOB NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS atom (
                id VARCHAR PRIMARY KEY,
                codepoint INTEGER NOT NULL UNIQUE,
                physicality_id VARCHAR NOT NULL REFERENCES physicality(id)
            )
        """)

    def _count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def _append(self, table: str, batch: pa.Table, select: str) -> int:
        """
        Insert a whole Arrow batch with one INSERT ... SELECT.

        Returns:
            Rows the table gained
        """
        if batch.num_rows == 0:
            return 0
        self.conn.register(_BATCH_RELATION, batch)
        try:
            self.conn.execute("BEGIN TRANSACTION")
            before = self._count(table)
            self.conn.execute(select)
            added = self._count(table) - before
            self.conn.execute("COMMIT")
        except duckdb.Error as e:
            try:
                self.conn.execute("ROLLBACK")
            except duckdb.Error:
                pass  # no transaction left to roll back
            raise StoreWriteError(f"Bulk append to {table} failed: {e}") from e
        finally:
            self.conn.unregister(_BATCH_RELATION)
        return added

    def write_physicality(self, rows: Sequence[PhysicalityRow]) -> int:
        """Returns the number of new physicality rows; repeated ids are skipped."""
        return self._append(
            "physicality", _physicality_batch(rows),
            f"INSERT OR IGNORE INTO physicality (id, hilbert, centroid) "
            f"SELECT DISTINCT ON (id) id, hilbert, centroid FROM {_BATCH_RELATION}",
        )

    def write_atoms(self, rows: Sequence[AtomRow]) -> int:
        return self._append(
            "atom", _atom_batch(rows),
            f"INSERT INTO atom (id, codepoint, physicality_id) "
            f"SELECT id, codepoint, physicality_id FROM {_BATCH_RELATION}",
        )

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def counts(self) -> Dict[str, int]:
        return {
            'physicality': self.conn.execute("SELECT COUNT(*) FROM physicality").fetchone()[0],
            'atom': self.conn.execute("SELECT COUNT(*) FROM atom").fetchone()[0],
        }

    def atom_for_codepoint(self, cp: int) -> Optional[Dict[str, object]]:
        """Atom joined with its physicality row."""
        result = self.conn.execute("""
            SELECT a.id, a.codepoint, p.id, p.hilbert, p.centroid
            FROM atom a JOIN physicality p ON a.physicality_id = p.id
            WHERE a.codepoint = ?
        """, [cp]).fetchone()
        if not result:
            return None
        return {
            'id': result[0],
            'codepoint': result[1],
            'physicality_id': result[2],
            'hilbert': result[3],
            'centroid': bytes(result[4]),
        }

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# =============================================================================
# In-memory recorder
# =============================================================================

@dataclass
class RecordingWriter:
    """
    Keeps every row in memory and logs the order of calls.

    `log` holds ('physicality' | 'atom', row count) per call.
    """
    physicality: Dict[str, PhysicalityRow] = field(default_factory=dict)
    atoms: Dict[str, AtomRow] = field(default_factory=dict)
    log: List[Tuple[str, int]] = field(default_factory=list)

    def write_physicality(self, rows: Sequence[PhysicalityRow]) -> int:
        before = len(self.physicality)
        for row in rows:
            self.physicality.setdefault(row.id, row)
        self.log.append(('physicality', len(rows)))
        return len(self.physicality) - before

    def write_atoms(self, rows: Sequence[AtomRow]) -> int:
        for row in rows:
            if row.physicality_id not in self.physicality:
                raise StoreWriteError(
                    f"Atom U+{row.codepoint:04X} references unknown physicality {row.physicality_id}"
                )
            if row.id in self.atoms:
                raise StoreWriteError(f"Duplicate atom id {row.id}")
        for row in rows:
            self.atoms[row.id] = row
        self.log.append(('atom', len(rows)))
        return len(rows)
