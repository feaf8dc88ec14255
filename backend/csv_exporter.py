"""
Table rendering and CSV export for reconciled extraction results
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from key_reconciler import DisplayColumn, DocumentLookup, Observation

DOCUMENT_HEADER = "Document"
NOT_AVAILABLE = "N/A"
EXPORT_FILENAME = "extracted_data.csv"

_NEEDS_QUOTING = (",", '"', "\n", "\r")

DocumentRow = Tuple[str, Iterable[Observation]]


def escape_csv_cell(value: Optional[str]) -> str:
    """Quote a cell containing a delimiter, quote or line break; double inner quotes"""
    text = "" if value is None else str(value)
    if any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def render_value(value: Optional[str]) -> str:
    # Missing and blank values both show as N/A
    return value if value else NOT_AVAILABLE


def build_table(columns: Sequence[DisplayColumn], documents: Iterable[DocumentRow]) -> Tuple[List[str], List[List[str]]]:
    """
    Headers and rows for display or export.

    `documents` yields (document name, observations) pairs in row order.
    """
    headers = [DOCUMENT_HEADER] + [column.display_key for column in columns]
    rows = []
    for name, observations in documents:
        lookup = DocumentLookup(observations)
        rows.append([name] + [render_value(lookup.get(column)) for column in columns])
    return headers, rows


def export_csv(columns: Sequence[DisplayColumn], documents: Iterable[DocumentRow]) -> str:
    headers, rows = build_table(columns, documents)
    lines = [",".join(escape_csv_cell(cell) for cell in headers)]
    for row in rows:
        lines.append(",".join(escape_csv_cell(cell) for cell in row))
    return "\n".join(lines)
