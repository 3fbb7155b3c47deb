import csv
import logging
import re
from dataclasses import dataclass, field
from io import StringIO
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
MIN_COLUMNS = 2
MAX_COLUMNS = 50


@dataclass
class DelimiterDetection:
    is_csv: bool
    delimiter: str
    has_headers: bool
    row_count: int
    column_count: int
    confidence: float


@dataclass
class TabularContent:
    """Header row plus data rows, before they are turned into RawRows."""
    headers: List[str]
    raw_headers: List[str]
    rows: List[List[object]]
    delimiter: str = ""
    linebreak: str = ""
    field_count_mismatches: List[Tuple[int, int]] = field(default_factory=list)


def _is_number(cell: str) -> bool:
    try:
        float(cell)
    except ValueError:
        return False
    return True


def detect_delimiter(text: str) -> DelimiterDetection:
    """
    Pick the most plausible delimiter for delimited text.

    Each candidate is scored on the first two non-blank lines:
    - +2 when the first line splits into 2..50 columns
    - +3 when the first and second lines split into the same number of columns
    - +1 tie-break bonus for comma
    The highest score wins; on a tie the earlier candidate is kept.
    """
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return DelimiterDetection(False, ",", False, 0, 0, 0.0)

    best_delimiter = ","
    best_score = 0
    for delimiter in CANDIDATE_DELIMITERS:
        first_line = lines[0].split(delimiter)
        second_line = lines[1].split(delimiter) if len(lines) > 1 else []

        score = 0
        if MIN_COLUMNS <= len(first_line) <= MAX_COLUMNS:
            score += 2
        if len(first_line) == len(second_line):
            score += 3
        if delimiter == ",":
            score += 1

        if score > best_score:
            best_score = score
            best_delimiter = delimiter

    first_row = lines[0].split(best_delimiter)
    has_headers = any(cell.strip() and not _is_number(cell.strip()) for cell in first_row)

    return DelimiterDetection(
        is_csv=best_score > 0,
        delimiter=best_delimiter,
        has_headers=has_headers,
        row_count=len(lines),
        column_count=len(first_row),
        confidence=min(best_score / 5, 1.0),
    )


def normalize_header(header: object, index: int) -> str:
    """Trim, drop punctuation and collapse whitespace; fall back to a positional name."""
    text = "" if header is None else str(header)
    cleaned = re.sub(r"[^\w\s]", "", text.strip())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or f"Column_{index + 1}"


def build_headers(raw_headers: Sequence[object]) -> Tuple[List[str], int, Dict[str, int]]:
    """
    Normalize a header row.

    Returns the unique header names, the number of headers that were blank and
    a count of normalized names that occurred more than once. Repeated names
    keep their column under a numbered suffix (``Name``, ``Name_2``).
    """
    normalized = [normalize_header(header, index) for index, header in enumerate(raw_headers)]
    empty_count = sum(1 for header in raw_headers if header is None or not str(header).strip())

    counts: Dict[str, int] = {}
    for name in normalized:
        counts[name] = counts.get(name, 0) + 1
    duplicates = {name: count for name, count in counts.items() if count > 1}

    seen: Dict[str, int] = {}
    unique: List[str] = []
    taken = set(normalized)
    for name in normalized:
        occurrence = seen.get(name, 0) + 1
        seen[name] = occurrence
        if occurrence == 1:
            unique.append(name)
            continue
        candidate = f"{name}_{occurrence}"
        while candidate in taken:
            occurrence += 1
            candidate = f"{name}_{occurrence}"
        taken.add(candidate)
        unique.append(candidate)

    return unique, empty_count, duplicates


def _detect_linebreak(text: str) -> str:
    if "\r\n" in text:
        return "\r\n"
    if "\r" in text:
        return "\r"
    return "\n"


def process_delimited(text: str, delimiter: Optional[str] = None) -> TabularContent:
    """
    Split delimited text into a header row and data rows.

    Values are kept as raw strings; coercion happens in the field mapper.
    Completely empty lines are skipped.
    """
    if delimiter is None:
        delimiter = detect_delimiter(text).delimiter

    reader = csv.reader(StringIO(text, newline=""), delimiter=delimiter)
    all_rows = [row for row in reader if row]

    if not all_rows:
        logger.info("Delimited content contains no rows")
        return TabularContent(headers=[], raw_headers=[], rows=[], delimiter=delimiter,
                              linebreak=_detect_linebreak(text))

    raw_headers = all_rows[0]
    headers, _, _ = build_headers(raw_headers)
    data_rows = all_rows[1:]

    mismatches = [
        (index, len(row))
        for index, row in enumerate(data_rows, start=1)
        if len(row) != len(headers)
    ]

    logger.info(
        "Processed delimited text: %d data rows, %d columns (delimiter=%r)",
        len(data_rows),
        len(headers),
        delimiter,
    )
    return TabularContent(
        headers=headers,
        raw_headers=list(raw_headers),
        rows=data_rows,
        delimiter=delimiter,
        linebreak=_detect_linebreak(text),
        field_count_mismatches=mismatches,
    )
