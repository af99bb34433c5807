"""
Shared fixtures: a small synthetic UCD directory and a streaming writer.
"""

import hashlib

import numpy as np
import pytest

from semantic_geometry.constants import CODESPACE_SIZE
from semantic_geometry.errors import StoreWriteError
from semantic_geometry.ucd_reader import load_ucd_directory


UNICODE_DATA = """\
0020;SPACE;Zs;0;WS;;;;;N;;;;;
0030;DIGIT ZERO;Nd;0;EN;;0;0;0;N;;;;;
0041;LATIN CAPITAL LETTER A;Lu;0;L;;;;;N;;;;0061;
0055;LATIN CAPITAL LETTER U;Lu;0;L;;;;;N;;;;0075;
0061;LATIN SMALL LETTER A;Ll;0;L;;;;;N;;;0041;;0041
0066;LATIN SMALL LETTER F;Ll;0;L;;;;;N;;;0046;;0046
0069;LATIN SMALL LETTER I;Ll;0;L;;;;;N;;;0049;;0049
0075;LATIN SMALL LETTER U;Ll;0;L;;;;;N;;;0055;;0055
00C0;LATIN CAPITAL LETTER A WITH GRAVE;Lu;0;L;0041 0300;;;;N;;;;00E0;
00DC;LATIN CAPITAL LETTER U WITH DIAERESIS;Lu;0;L;0055 0308;;;;N;;;;00FC;
01D5;LATIN CAPITAL LETTER U WITH DIAERESIS AND MACRON;Lu;0;L;00DC 0304;;;;N;;;;01D6;
0300;COMBINING GRAVE ACCENT;Mn;230;NSM;;;;;N;;;;;
0391;GREEK CAPITAL LETTER ALPHA;Lu;0;L;;;;;N;;;;03B1;
03B1;GREEK SMALL LETTER ALPHA;Ll;0;L;;;;;N;;;0391;;0391
3400;<CJK Ideograph Extension A, First>;Lo;0;L;;;;;N;;;;;
3405;<CJK Ideograph Extension A, Last>;Lo;0;L;;;;;N;;;;;
D800;<Non Private Use High Surrogate, First>;Cs;0;L;;;;;N;;;;;
DB7F;<Non Private Use High Surrogate, Last>;Cs;0;L;;;;;N;;;;;
E000;<Private Use, First>;Co;0;L;;;;;N;;;;;
F8FF;<Private Use, Last>;Co;0;L;;;;;N;;;;;
FB01;LATIN SMALL LIGATURE FI;Ll;0;L;<compat> 0066 0069;;;;N;;;;;
ZZZZ;NOT A CODEPOINT;Lu;0;L;;;;;N;;;;;
0042;TOO FEW FIELDS
"""

SCRIPTS = """\
# Scripts.txt (synthetic)
0020          ; Common # Zs       SPACE
0030..0039    ; Common # Nd  [10] DIGIT ZERO..DIGIT NINE
0041..005A    ; Latin # L&  [26] LATIN CAPITAL LETTER A..LATIN CAPITAL LETTER Z
0061..007A    ; Latin # L&  [26] LATIN SMALL LETTER A..LATIN SMALL LETTER Z
00C0..00DC    ; Latin
01D5          ; Latin
0300          ; Inherited
0391..03B1    ; Greek
3400..4DBF    ; Han
FB01          ; Latin
"""

BLOCKS = """\
0000..007F; Basic Latin
0080..00FF; Latin-1 Supplement
0100..017F; Latin Extended-A
0180..024F; Latin Extended-B
0300..036F; Combining Diacritical Marks
0370..03FF; Greek and Coptic
3400..4DBF; CJK Unified Ideographs Extension A
FB00..FB4F; Alphabetic Presentation Forms
"""

DERIVED_AGE = """\
0000..01F5    ; 1.1
3400..4DB5    ; 3.0
FB01          ; 1.1
not-a-range   ; 2.0
"""

ALLKEYS = """\
@version 15.0.0
0020  ; [*0209.0020.0002] # SPACE
0030  ; [.1FA5.0020.0002] # DIGIT ZERO
0041  ; [.2075.0020.0008] # LATIN CAPITAL LETTER A
0061  ; [.2075.0020.0002] # LATIN SMALL LETTER A
00C0  ; [.2075.0020.0008][.0000.0025.0002] # LATIN CAPITAL LETTER A WITH GRAVE
0055  ; [.21F0.0020.0008] # LATIN CAPITAL LETTER U
0075  ; [.21F0.0020.0002] # LATIN SMALL LETTER U
00DC  ; [.21F0.0020.0008][.0000.002B.0002] # LATIN CAPITAL LETTER U WITH DIAERESIS
01D5  ; [.21F0.0020.0008][.0000.002B.0002][.0000.0032.0002] # U WITH DIAERESIS AND MACRON
0066  ; [.20E7.0020.0002] # LATIN SMALL LETTER F
0069  ; [.2116.0020.0002] # LATIN SMALL LETTER I
FB01  ; [.20E7.0020.0004][.2116.0020.0004] # LATIN SMALL LIGATURE FI
0391  ; [.2367.0020.0008] # GREEK CAPITAL LETTER ALPHA
03B1  ; [.2367.0020.0002] # GREEK SMALL LETTER ALPHA
0300  ; [.0000.0025.0002] # COMBINING GRAVE ACCENT
0063 0068 ; [.20B7.0020.0002] # contraction, not per-codepoint
0041  ; no elements here
"""

UNIHAN_RS = """\
# Unihan_RadicalStrokeCounts.txt (synthetic)
U+3400\tkRSUnicode\t1.4
U+3401\tkRSUnicode\t1.3
U+3402\tkRSUnicode\t4.2
U+3403\tkRSUnicode\t120'.5
U+3404\tkRSUnicode\tbroken
U+3405\tkTotalStrokes\t9
"""


def write_ucd(directory):
    (directory / "UnicodeData.txt").write_text(UNICODE_DATA, encoding="utf-8")
    (directory / "Scripts.txt").write_text(SCRIPTS, encoding="utf-8")
    (directory / "Blocks.txt").write_text(BLOCKS, encoding="utf-8")
    (directory / "DerivedAge.txt").write_text(DERIVED_AGE, encoding="utf-8")
    (directory / "allkeys.txt").write_text(ALLKEYS, encoding="utf-8")
    (directory / "Unihan_RadicalStrokeCounts.txt").write_text(UNIHAN_RS, encoding="utf-8")
    return directory


@pytest.fixture(scope="session")
def ucd_dir(tmp_path_factory):
    return write_ucd(tmp_path_factory.mktemp("ucd"))


@pytest.fixture
def ucd_store(ucd_dir):
    return load_ucd_directory(ucd_dir)


class DigestWriter:
    """
    Streams rows into a SHA-256 digest instead of keeping them.

    Keeps just enough to check foreign keys, coverage, call order and
    centroid norms over the full codespace.
    """

    def __init__(self):
        self.digest = hashlib.sha256()
        self.physicality_ids = set()
        self.atom_counts = np.zeros(CODESPACE_SIZE, dtype=np.uint8)
        self.calls = []
        self.max_norm_error = 0.0

    def write_physicality(self, rows):
        before = len(self.physicality_ids)
        for row in rows:
            self.physicality_ids.add(row.id)
            self.digest.update(row.id.encode())
            self.digest.update(row.hilbert.encode())
            self.digest.update(row.centroid)
        if rows:
            coords = np.frombuffer(b"".join(r.centroid[5:] for r in rows), dtype="<f8")
            norms = np.linalg.norm(coords.reshape(-1, 4), axis=1)
            self.max_norm_error = max(self.max_norm_error, float(np.abs(norms - 1.0).max()))
        self.calls.append(("physicality", len(rows)))
        return len(self.physicality_ids) - before

    def write_atoms(self, rows):
        for row in rows:
            if row.physicality_id not in self.physicality_ids:
                raise StoreWriteError(f"Dangling physicality for U+{row.codepoint:04X}")
            self.atom_counts[row.codepoint] += 1
            self.digest.update(row.id.encode())
            self.digest.update(row.codepoint.to_bytes(4, "little"))
            self.digest.update(row.physicality_id.encode())
        self.calls.append(("atom", len(rows)))
        return len(rows)

    def hexdigest(self):
        return self.digest.hexdigest()


@pytest.fixture
def digest_writer():
    return DigestWriter()


@pytest.fixture(scope="session")
def digest_writer_class():
    return DigestWriter
