"""
UCD flat-file loader.

Builds an InMemoryMetadataStore from a directory of Unicode Character
Database files:

    UnicodeData.txt                    names, categories, decompositions, case
    Scripts.txt / Blocks.txt           range properties
    DerivedAge.txt                     range property
    allkeys.txt                        DUCET collation elements
    Unihan_RadicalStrokeCounts.txt     kRSUnicode (pre 15.1 layout)
    Unihan_IRGSources.txt              kRSUnicode (15.1+ layout)

Only UnicodeData.txt creates entries; every other file overlays attributes
onto entries that already exist. Missing files and malformed lines are
skipped, never fatal.

Usage:
    loader = UcdLoader("data/ucd")
    store = loader.load()
    print(loader.report)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union
import logging
import re

from .constants import MAX_CODEPOINT
from .records import UcdEntry, UCAWeights
from .ucd_store import InMemoryMetadataStore

logger = logging.getLogger(__name__)


UNICODE_DATA = "UnicodeData.txt"
SCRIPTS = "Scripts.txt"
BLOCKS = "Blocks.txt"
DERIVED_AGE = "DerivedAge.txt"
ALLKEYS = "allkeys.txt"
UNIHAN_FILES = ("Unihan_RadicalStrokeCounts.txt", "Unihan_IRGSources.txt")

_COLLATION_ELEMENT = re.compile(
    r"\[[.*]([0-9A-Fa-f]+)\.([0-9A-Fa-f]+)\.([0-9A-Fa-f]+)\]"
)


class MalformedLine(ValueError):
    """A data line that cannot be parsed; the loader skips it."""


@dataclass
class LoaderConfig:
    """
    Loader options.

    Attributes:
        expand_ranges: Expand `<..., First>` / `<..., Last>` pairs into entries
        placeholder_categories: Range categories left unassigned (surrogates,
            private use) so they keep their placeholder classification
    """
    expand_ranges: bool = True
    placeholder_categories: Tuple[str, ...] = ('Cs', 'Co')


@dataclass
class LoadReport:
    """What the loader read and what it had to skip."""
    files_read: List[str] = field(default_factory=list)
    files_missing: List[str] = field(default_factory=list)
    skipped_lines: Dict[str, int] = field(default_factory=dict)
    entries: int = 0

    def skip(self, filename: str):
        self.skipped_lines[filename] = self.skipped_lines.get(filename, 0) + 1

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped_lines.values())


# =============================================================================
# Field helpers
# =============================================================================

def parse_codepoint(text: str) -> int:
    """Parse a hex codepoint, rejecting anything outside the codespace."""
    try:
        cp = int(text.strip(), 16)
    except ValueError:
        raise MalformedLine(f"Bad codepoint: {text!r}") from None
    if not 0 <= cp <= MAX_CODEPOINT:
        raise MalformedLine(f"Codepoint out of range: {text!r}")
    return cp


def parse_range(text: str) -> Tuple[int, int]:
    """Parse `XXXX` or `XXXX..YYYY` into an inclusive range."""
    if '..' in text:
        lo, hi = text.split('..', 1)
        first, last = parse_codepoint(lo), parse_codepoint(hi)
        if last < first:
            raise MalformedLine(f"Inverted range: {text!r}")
        return first, last
    cp = parse_codepoint(text)
    return cp, cp


def decomposition_type(mapping: str) -> str:
    """`<compat> 0020 0301` -> 'compat'; plain mapping -> 'can'; empty -> ''."""
    mapping = mapping.strip()
    if not mapping:
        return ""
    if mapping.startswith('<'):
        end = mapping.find('>')
        if end < 0:
            raise MalformedLine(f"Unterminated decomposition tag: {mapping!r}")
        return mapping[1:end]
    return "can"


def _data_lines(path: Path) -> Iterator[Tuple[int, str]]:
    """Yield (line number, content) with comments and blank lines stripped."""
    with open(path, encoding='utf-8') as f:
        for lineno, line in enumerate(f, 1):
            content = line.split('#', 1)[0].strip()
            if content:
                yield lineno, content


# =============================================================================
# Loader
# =============================================================================

class UcdLoader:
    """Loads a UCD directory into an InMemoryMetadataStore."""

    def __init__(self, data_dir: Union[str, Path], config: Optional[LoaderConfig] = None):
        self.data_dir = Path(data_dir)
        self.config = config or LoaderConfig()
        self.report = LoadReport()
        self._entries: Dict[int, UcdEntry] = {}

    def load(self) -> InMemoryMetadataStore:
        self.report = LoadReport()
        self._entries = {}

        self._read(UNICODE_DATA, self._parse_unicode_data)
        self._read(SCRIPTS, lambda p: self._parse_range_property(p, 'script'))
        self._read(BLOCKS, lambda p: self._parse_range_property(p, 'block'))
        self._read(DERIVED_AGE, lambda p: self._parse_range_property(p, 'age'))
        self._read(ALLKEYS, self._parse_allkeys)
        for name in UNIHAN_FILES:
            self._read(name, self._parse_unihan)

        self.report.entries = len(self._entries)
        logger.info(
            "Loaded %d UCD entries from %s (%d lines skipped)",
            self.report.entries, self.data_dir, self.report.total_skipped,
        )
        return InMemoryMetadataStore(self._entries.values())

    def _read(self, filename: str, parser):
        path = self.data_dir / filename
        if not path.is_file():
            # Without UnicodeData.txt nothing is assigned
            level = logging.WARNING if filename == UNICODE_DATA else logging.INFO
            logger.log(level, "UCD file not found, skipping: %s", path)
            self.report.files_missing.append(filename)
            return
        parser(path)
        self.report.files_read.append(filename)

    def _skip(self, path: Path, lineno: int, reason: Exception):
        logger.debug("%s:%d skipped: %s", path.name, lineno, reason)
        self.report.skip(path.name)

    # -------------------------------------------------------------------------
    # UnicodeData.txt
    # -------------------------------------------------------------------------

    def _parse_unicode_data(self, path: Path):
        range_start: Optional[Tuple[int, List[str]]] = None

        for lineno, line in _data_lines(path):
            fields = line.split(';')
            try:
                if len(fields) < 15:
                    raise MalformedLine(f"Expected 15 fields, got {len(fields)}")
                cp = parse_codepoint(fields[0])
                name = fields[1]

                if name.endswith(', First>'):
                    range_start = (cp, fields)
                    continue
                if name.endswith(', Last>'):
                    if range_start is None:
                        raise MalformedLine("Range end without start")
                    first, first_fields = range_start
                    range_start = None
                    self._add_range(first, cp, first_fields)
                    continue

                entry = self._entry_from_fields(cp, fields)
            except MalformedLine as e:
                self._skip(path, lineno, e)
                continue
            self._entries[cp] = entry

    def _entry_from_fields(self, cp: int, fields: List[str], name: Optional[str] = None) -> UcdEntry:
        try:
            ccc = int(fields[3]) if fields[3].strip() else 0
        except ValueError:
            raise MalformedLine(f"Bad combining class: {fields[3]!r}") from None
        mapping = fields[5].strip()
        return UcdEntry(
            codepoint=cp,
            name=fields[1] if name is None else name,
            general_category=fields[2].strip(),
            combining_class=ccc,
            decomposition_type=decomposition_type(mapping),
            decomposition_mapping=mapping,
            simple_uppercase=fields[12].strip(),
            simple_lowercase=fields[13].strip(),
            simple_titlecase=fields[14].strip(),
        )

    def _add_range(self, first: int, last: int, fields: List[str]):
        if not self.config.expand_ranges:
            return
        if fields[2].strip() in self.config.placeholder_categories:
            return
        label = fields[1].strip('<>').rsplit(',', 1)[0]
        for cp in range(first, last + 1):
            if label.startswith('CJK Ideograph'):
                name = f"CJK UNIFIED IDEOGRAPH-{cp:04X}"
            else:
                name = ""
            self._entries[cp] = self._entry_from_fields(cp, fields, name=name)

    # -------------------------------------------------------------------------
    # Range property files (Scripts, Blocks, DerivedAge)
    # -------------------------------------------------------------------------

    def _parse_range_property(self, path: Path, attribute: str):
        for lineno, line in _data_lines(path):
            fields = [f.strip() for f in line.split(';')]
            try:
                if len(fields) < 2 or not fields[1]:
                    raise MalformedLine("Missing property value")
                first, last = parse_range(fields[0])
            except MalformedLine as e:
                self._skip(path, lineno, e)
                continue
            value = fields[1]
            if last - first > len(self._entries):
                targets = (cp for cp in self._entries if first <= cp <= last)
            else:
                targets = (cp for cp in range(first, last + 1) if cp in self._entries)
            for cp in list(targets):
                setattr(self._entries[cp], attribute, value)

    # -------------------------------------------------------------------------
    # allkeys.txt (DUCET)
    # -------------------------------------------------------------------------

    def _parse_allkeys(self, path: Path):
        with open(path, encoding='utf-8') as f:
            for lineno, raw in enumerate(f, 1):
                if not raw.strip() or raw[0] in '@#':
                    continue
                line = raw.split('#', 1)[0]
                if ';' not in line:
                    self._skip(path, lineno, MalformedLine("Missing ';'"))
                    continue
                cp_field, elements = line.split(';', 1)
                cp_field = cp_field.strip()
                if ' ' in cp_field:
                    continue  # contractions are not per-codepoint data
                try:
                    cp = parse_codepoint(cp_field)
                except MalformedLine as e:
                    self._skip(path, lineno, e)
                    continue
                entry = self._entries.get(cp)
                if entry is None:
                    continue
                weights = [
                    UCAWeights(int(p, 16), int(s, 16), int(t, 16))
                    for p, s, t in _COLLATION_ELEMENT.findall(elements)
                ]
                if not weights:
                    self._skip(path, lineno, MalformedLine("No collation elements"))
                    continue
                entry.uca_weights.extend(weights)

    # -------------------------------------------------------------------------
    # Unihan (kRSUnicode)
    # -------------------------------------------------------------------------

    def _parse_unihan(self, path: Path):
        for lineno, line in _data_lines(path):
            parts = line.split('\t')
            if len(parts) < 3 or parts[1] != 'kRSUnicode':
                continue
            try:
                if not parts[0].startswith('U+'):
                    raise MalformedLine(f"Bad Unihan codepoint: {parts[0]!r}")
                cp = parse_codepoint(parts[0][2:])
                radical, strokes = self._radical_strokes(parts[2])
            except MalformedLine as e:
                self._skip(path, lineno, e)
                continue
            entry = self._entries.get(cp)
            if entry is not None:
                entry.radical = radical
                entry.strokes = strokes

    @staticmethod
    def _radical_strokes(value: str) -> Tuple[int, int]:
        """First `R'.S` value of kRSUnicode -> (R, S); simplified-radical marks dropped."""
        first = value.split()[0] if value.split() else ""
        if '.' not in first:
            raise MalformedLine(f"Bad kRSUnicode value: {value!r}")
        rad, strokes = first.split('.', 1)
        try:
            return int(rad.rstrip("'\"")), int(strokes)
        except ValueError:
            raise MalformedLine(f"Bad kRSUnicode value: {value!r}") from None


def load_ucd_directory(data_dir: Union[str, Path],
                       config: Optional[LoaderConfig] = None) -> InMemoryMetadataStore:
    """Convenience wrapper around UcdLoader.load()."""
    return UcdLoader(data_dir, config).load()
