"""
Semantic Geometry - Unicode codespace on the 3-sphere

Gives every Unicode codepoint (U+0000 .. U+10FFFF) a deterministic point on
S³ such that semantically related characters land close together, plus a
128-bit Hilbert index and content-addressed identities, and bulk-writes the
result as physicality / atom rows.

================================================================================
PIPELINE
================================================================================

UCD files → Metadata Store → CodepointArena → Linearizer → S³ embedding
          → Hilbert index + identities → physicality rows → atom rows

LAYER 1: Metadata
- ucd_reader: UnicodeData / Scripts / Blocks / DerivedAge / allkeys / Unihan
- ucd_store: InMemoryMetadataStore, DuckDBMetadataStore

LAYER 2: Order
- records: placeholder classification, CodepointArena
- decomposition: base character resolution (cycle-safe)
- linearizer: fixed multi-key total order, RelationGraph (auxiliary)

LAYER 3: Geometry
- embedding: Fibonacci lattice on S² lifted by the inverse Hopf map
- hilbert: 4D Hilbert curve, 32 bits per axis
- identity: position / codepoint identities, EWKB PointZM

LAYER 4: Ingestion
- geometry_store: DuckDBGeometryStore, RecordingWriter
- pipeline: IngestionPipeline (parallel compute, ordered bulk writes)

Usage:
    from semantic_geometry import load_ucd_directory, DuckDBGeometryStore, ingest

    store = load_ucd_directory("data/ucd")
    with DuckDBGeometryStore("geometry.duckdb") as target:
        report = ingest(store, target)
"""

__version__ = "0.1.0"

from .errors import (
    SemanticGeometryError,
    InvariantViolation,
    StoreWriteError,
    PipelineStateError,
)
from .records import (
    PlaceholderKind,
    classify_placeholder,
    UCAWeights,
    UcdEntry,
    CodepointRecord,
    CodepointArena,
)
from .ucd_store import MetadataStore, InMemoryMetadataStore, DuckDBMetadataStore
from .ucd_reader import LoaderConfig, LoadReport, UcdLoader, load_ucd_directory
from .decomposition import DecompositionResolver, resolve_base, first_decomposition_target
from .linearizer import (
    ScriptInterner,
    Linearizer,
    RelationGraph,
    build_relation_graph,
    check_permutation,
    primary_group,
)
from .embedding import fibonacci_s3, point_on_s3, hopf_inverse, hopf_forward, check_unit_norm
from .hilbert import HilbertIndex, HilbertBatch, encode, encode_point, decode
from .identity import (
    IdentityConfig,
    position_identity,
    codepoint_identity,
    encode_geometry,
    decode_geometry,
    geometry_hex,
)
from .geometry_store import (
    PhysicalityRow,
    AtomRow,
    GeometryWriter,
    DuckDBGeometryStore,
    RecordingWriter,
)
from .pipeline import (
    Stage,
    PipelineConfig,
    IngestionReport,
    IngestionPipeline,
    ingest,
)

__all__ = [
    # Errors
    "SemanticGeometryError",
    "InvariantViolation",
    "StoreWriteError",
    "PipelineStateError",
    # Records
    "PlaceholderKind",
    "classify_placeholder",
    "UCAWeights",
    "UcdEntry",
    "CodepointRecord",
    "CodepointArena",
    # Metadata
    "MetadataStore",
    "InMemoryMetadataStore",
    "DuckDBMetadataStore",
    "LoaderConfig",
    "LoadReport",
    "UcdLoader",
    "load_ucd_directory",
    # Order
    "DecompositionResolver",
    "resolve_base",
    "first_decomposition_target",
    "ScriptInterner",
    "Linearizer",
    "RelationGraph",
    "build_relation_graph",
    "check_permutation",
    "primary_group",
    # Geometry
    "fibonacci_s3",
    "point_on_s3",
    "hopf_inverse",
    "hopf_forward",
    "check_unit_norm",
    "HilbertIndex",
    "HilbertBatch",
    "encode",
    "encode_point",
    "decode",
    "IdentityConfig",
    "position_identity",
    "codepoint_identity",
    "encode_geometry",
    "decode_geometry",
    "geometry_hex",
    # Ingestion
    "PhysicalityRow",
    "AtomRow",
    "GeometryWriter",
    "DuckDBGeometryStore",
    "RecordingWriter",
    "Stage",
    "PipelineConfig",
    "IngestionReport",
    "IngestionPipeline",
    "ingest",
]
