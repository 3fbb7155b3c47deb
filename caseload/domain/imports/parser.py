"""
File parsing for the import pipeline.

Turns the bytes of one uploaded file into RawRows (ordered header -> raw value
mappings). Format is chosen from the file extension, or sniffed from the
content when no name is known. Data-quality findings are returned as warnings;
only unreadable content is fatal, in which case no rows are returned.
"""
import csv
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from caseload.core.config import settings
from caseload.domain.imports.exceptions import UnsupportedFileTypeError
from caseload.domain.imports.models import FileValidationResult
from .processors.csv_processor import TabularContent, build_headers, process_delimited
from .processors.excel_processor import process_excel
from .processors.json_processor import process_json

logger = logging.getLogger(__name__)

RawRow = Dict[str, Any]

DELIMITED_TYPES = ("csv", "tsv", "txt")
SUPPORTED_FORMATS_MESSAGE = "Supported formats: CSV, TSV, JSON, Excel (.xlsx, .xls)"
NO_DATA_ROWS_WARNING = "No data rows found"

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


@dataclass
class ParseOptions:
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    delimiter: Optional[str] = None
    empty_row_warning_ratio: float = settings.empty_row_warning_ratio


@dataclass
class ParseResult:
    rows: List[RawRow] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return bool(self.meta.get("aborted"))

    @property
    def headers(self) -> List[str]:
        return list(self.meta.get("fields", []))


def detect_file_type(filename: str) -> str:
    """Detect file type from filename."""
    lowered = filename.lower()
    if lowered.endswith('.csv'):
        return 'csv'
    elif lowered.endswith('.tsv'):
        return 'tsv'
    elif lowered.endswith('.txt'):
        return 'txt'
    elif lowered.endswith(('.xlsx', '.xls')):
        return 'excel'
    elif lowered.endswith('.json'):
        return 'json'
    extension = lowered.rsplit('.', 1)[-1] if '.' in lowered else lowered
    raise UnsupportedFileTypeError(
        f"Unsupported file format: {extension}. {SUPPORTED_FORMATS_MESSAGE}",
        file_name=filename,
    )


def sniff_file_type(content: Union[bytes, str]) -> str:
    """Guess the file type from content when no file name is available."""
    if isinstance(content, bytes):
        if content.startswith(_ZIP_MAGIC) or content.startswith(_OLE_MAGIC):
            return 'excel'
        head = content[:64].decode('utf-8', errors='ignore')
    else:
        head = content[:64]
    if head.lstrip('\ufeff \t\r\n').startswith(('[', '{')):
        return 'json'
    return 'csv'


def validate_file(
    file_name: str,
    file_size: int,
    max_size: Optional[int] = None,
    warn_size: Optional[int] = None,
) -> FileValidationResult:
    """
    Check an upload before parsing: size ceiling, soft size warning and extension.
    """
    max_size = max_size if max_size is not None else settings.upload_max_file_size_mb * 1024 * 1024
    warn_size = warn_size if warn_size is not None else settings.upload_warn_file_size_mb * 1024 * 1024
    errors: List[str] = []
    warnings: List[str] = []

    if file_size > max_size:
        errors.append(
            f"File size ({round(file_size / 1024 / 1024)}MB) exceeds maximum allowed size "
            f"({round(max_size / 1024 / 1024)}MB)"
        )
    elif file_size > warn_size:
        warnings.append(
            f"Large file detected ({round(file_size / 1024 / 1024)}MB). Processing may take a while."
        )

    file_type = None
    try:
        file_type = detect_file_type(file_name)
    except UnsupportedFileTypeError as e:
        warnings.append(str(e))

    return FileValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        file_name=file_name,
        file_size=file_size,
        file_type=file_type,
    )


def _decode_text(content: Union[bytes, str]) -> str:
    if isinstance(content, str):
        return content.lstrip('\ufeff')
    return content.decode('utf-8-sig')


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _tabular_to_rows(tabular: TabularContent) -> List[RawRow]:
    rows: List[RawRow] = []
    for values in tabular.rows:
        row: RawRow = {}
        for index, header in enumerate(tabular.headers):
            row[header] = values[index] if index < len(values) else None
        rows.append(row)
    return rows


def _header_warnings(raw_headers: List[Any]) -> List[str]:
    warnings: List[str] = []
    _, empty_count, duplicates = build_headers(raw_headers)
    if empty_count:
        warnings.append(f"Found {empty_count} empty column headers")
    if duplicates:
        listed = ", ".join(f'"{name}" ({count} times)' for name, count in duplicates.items())
        warnings.append(f"Duplicate column headers found: {listed}")
    return warnings


def _row_quality_warnings(rows: List[RawRow], ratio: float) -> List[str]:
    if not rows:
        return [NO_DATA_ROWS_WARNING]
    empty_rows = sum(1 for row in rows if all(_is_blank(value) for value in row.values()))
    if empty_rows > len(rows) * ratio:
        return [f"{empty_rows} rows appear to be empty or contain only whitespace"]
    return []


def _fatal(message: str, file_type: Optional[str]) -> ParseResult:
    logger.error("Parsing failed: %s", message)
    return ParseResult(
        rows=[],
        errors=[message],
        warnings=[],
        meta={"file_type": file_type, "delimiter": "", "linebreak": "", "aborted": True, "fields": []},
    )


def parse_file(content: Union[bytes, str], options: Optional[ParseOptions] = None) -> ParseResult:
    """
    Parse one file into RawRows.

    Fatal failures (unsupported format, malformed JSON, unreadable workbook,
    undecodable text) yield zero rows and a single error describing the failure.
    """
    options = options or ParseOptions()

    try:
        if options.file_type:
            file_type = options.file_type
        elif options.file_name:
            file_type = detect_file_type(options.file_name)
        else:
            file_type = sniff_file_type(content)
    except UnsupportedFileTypeError as e:
        return _fatal(str(e), None)

    warnings: List[str] = []
    meta: Dict[str, Any] = {"file_type": file_type, "delimiter": "", "linebreak": "", "aborted": False}

    if file_type in DELIMITED_TYPES:
        try:
            text = _decode_text(content)
        except UnicodeDecodeError as e:
            return _fatal(f"Unable to decode file as UTF-8 text: {e}", file_type)
        try:
            tabular = process_delimited(text, delimiter=options.delimiter)
        except (csv.Error, ValueError) as e:
            return _fatal(f"Critical parsing error: {e}", file_type)
        rows = _tabular_to_rows(tabular)
        warnings.extend(_header_warnings(tabular.raw_headers))
        warnings.extend(
            f"Row {row_number}: expected {len(tabular.headers)} fields but found {found}"
            for row_number, found in tabular.field_count_mismatches
        )
        meta.update(delimiter=tabular.delimiter, linebreak=tabular.linebreak, fields=tabular.headers)

    elif file_type == 'json':
        try:
            rows = process_json(content)
        except UnicodeDecodeError as e:
            return _fatal(f"Unable to decode file as UTF-8 text: {e}", file_type)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError subclass
            return _fatal(f"Invalid JSON format: {e}", file_type)
        fields: List[str] = []
        for row in rows:
            fields.extend(key for key in row if key not in fields)
        meta["fields"] = fields

    elif file_type == 'excel':
        if isinstance(content, str):
            return _fatal("Excel content must be binary", file_type)
        try:
            tabular = process_excel(content)
        except ValueError as e:
            return _fatal(str(e), file_type)
        rows = _tabular_to_rows(tabular)
        warnings.extend(_header_warnings(tabular.raw_headers))
        meta["fields"] = tabular.headers

    else:
        return _fatal(f"Unsupported file format: {file_type}. {SUPPORTED_FORMATS_MESSAGE}", file_type)

    warnings.extend(_row_quality_warnings(rows, options.empty_row_warning_ratio))
    meta["row_count"] = len(rows)

    logger.info("Parsed %d rows from %s content (%d warnings)", len(rows), file_type, len(warnings))
    return ParseResult(rows=rows, errors=[], warnings=warnings, meta=meta)
