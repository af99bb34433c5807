# semantic_geometry/constants.py
"""
Semantic Geometry Constants

This module defines constants used throughout the ingestion pipeline:

LAYER 1: Codespace
- CODESPACE_SIZE: Number of Unicode codepoints (0x0 .. 0x10FFFF)
- Placeholder ranges: surrogate, private use, noncharacter

LAYER 2: Linearization
- CATEGORY_BUCKETS: General category first letter -> primary group
- SCRIPT_SENTINEL: Script id for codepoints without a script

LAYER 3: Geometry
- PHI / PSI: Incommensurate multipliers for the S² lattice and S¹ fiber
- HILBERT_BITS: Grid precision per axis of the 4D Hilbert curve
- EWKB_*: Byte layout of the serialized PointZM geometry

LAYER 4: Ingestion
- UNASSIGNED_BATCH_SIZE: Unassigned codepoints computed and written per batch
"""
import math


# =============================================================================
# LAYER 1: Codespace
# =============================================================================

MAX_CODEPOINT = 0x10FFFF
CODESPACE_SIZE = MAX_CODEPOINT + 1     # 1,114,112 codepoints

SURROGATE_RANGE = (0xD800, 0xDFFF)
NONCHARACTER_RANGE = (0xFDD0, 0xFDEF)  # Plus U+xxFFFE / U+xxFFFF in every plane
PRIVATE_USE_RANGES = (
    (0xE000, 0xF8FF),        # BMP Private Use Area
    (0xF0000, 0xFFFFD),      # Supplementary Private Use Area-A
    (0x100000, 0x10FFFD),    # Supplementary Private Use Area-B
)


# =============================================================================
# LAYER 2: Linearization
# =============================================================================

# First letter of the general category -> primary sort bucket
CATEGORY_BUCKETS = {
    'L': 1,   # Letters
    'N': 2,   # Numbers
    'P': 3,   # Punctuation
    'S': 4,   # Symbols
    'M': 5,   # Marks
    'Z': 6,   # Separators
}
DEFAULT_BUCKET = 7   # Other (C*) and unknown / empty category

# Empty script sorts after every interned script and never consumes an id
SCRIPT_SENTINEL = 999

# Canonical decompositions are shallow; anything deeper is treated as a cycle
MAX_DECOMPOSITION_DEPTH = 20


# =============================================================================
# LAYER 3: Geometry
# =============================================================================

PHI = (1.0 + math.sqrt(5.0)) / 2.0     # Golden ratio, base sphere longitude
PSI = 1.32471795724474602596           # Plastic constant, fiber phase (x³ = x + 1)
TAU = 2.0 * math.pi

NORM_TOLERANCE = 1e-6

# 4D Hilbert curve over a 32-bit grid -> 128-bit index
HILBERT_DIMENSIONS = 4
HILBERT_BITS = 32
HILBERT_INDEX_BITS = HILBERT_DIMENSIONS * HILBERT_BITS

# EWKB PointZM: byte order marker + type tag (Z and M flags set on POINT)
EWKB_LITTLE_ENDIAN = 0x01
EWKB_POINT_ZM = 0xC0000001

# Identity digests are truncated to a UUID-shaped 16 bytes
IDENTITY_BYTES = 16


# =============================================================================
# LAYER 4: Ingestion
# =============================================================================

# Unassigned codepoints are embedded and written in bounded batches
UNASSIGNED_BATCH_SIZE = 100_000
