"""
Key reconciliation for extracted key/value observations

Documents processed by the extraction model rarely agree on field labels:
one invoice says "Invoice No", another "Invoice Number", a bilingual form
carries both "Name" and "नाम". This module turns the observations of every
completed document into one column schema for the results table:

1. Trim keys and drop empty ones
2. Collect the set of values seen under each raw key
3. Group raw keys whose value sets are identical
4. Emit one display column per group, in first-discovery order

The module is pure: no I/O, no shared state, and inputs are never mutated.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

# Returned by lookups when none of a column's keys was seen in the document
NOT_FOUND = None

KEY_SEPARATOR = "/"


@dataclass(frozen=True)
class Observation:
    """One key/value pair extracted from one document"""
    key: str
    value: str
    document_id: str


@dataclass(frozen=True, eq=False)
class DisplayColumn:
    """
    A table column standing for one or more synonymous raw keys.

    Columns compare by identity. `display_key` is for presentation only: a raw
    key literally named "A/B" and a merged {"A", "B"} group share the same
    display key but are different columns.
    """
    display_key: str
    member_keys: Tuple[str, ...]

    @property
    def column_id(self) -> str:
        """Stable identifier derived from the member keys"""
        joined = "\x1f".join(self.member_keys)
        return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:12]

    def to_dict(self) -> Dict:
        return {
            "id": self.column_id,
            "display_key": self.display_key,
            "member_keys": list(self.member_keys),
        }


def _aggregate_value_sets(observations: Iterable[Observation]) -> Tuple[Dict[str, Set[str]], List[str]]:
    """Map each trimmed raw key to its value set, remembering first-seen order"""
    value_sets: Dict[str, Set[str]] = {}
    discovery_order: List[str] = []

    for observation in observations:
        key = observation.key.strip()
        if not key:
            continue

        if key not in value_sets:
            value_sets[key] = set()
            discovery_order.append(key)

        value_sets[key].add(observation.value)

    return value_sets, discovery_order


def build_schema(observations: Iterable[Observation]) -> List[DisplayColumn]:
    """
    Build the ordered display schema from all completed observations.

    Two raw keys share a column iff their value sets are equal. Keys with an
    empty value set are left out. Column order follows the first time any
    member key appears in the observation stream; member keys are sorted.
    """
    value_sets, discovery_order = _aggregate_value_sets(observations)

    buckets: Dict[Tuple[str, ...], List[str]] = {}
    signature_of: Dict[str, Tuple[str, ...]] = {}
    for key in discovery_order:
        values = value_sets[key]
        if not values:
            continue
        signature = tuple(sorted(values))
        signature_of[key] = signature
        buckets.setdefault(signature, []).append(key)

    schema: List[DisplayColumn] = []
    assigned: Set[str] = set()
    for key in discovery_order:
        if key in assigned or key not in signature_of:
            continue

        members = tuple(sorted(buckets[signature_of[key]]))
        schema.append(DisplayColumn(display_key=KEY_SEPARATOR.join(members), member_keys=members))
        assigned.update(members)

    return schema


class DocumentLookup:
    """Per-document key map, built once and reused across columns"""

    def __init__(self, observations: Iterable[Observation], document_id: Optional[str] = None):
        self.values: Dict[str, str] = {}
        for observation in observations:
            if document_id is not None and observation.document_id != document_id:
                continue
            key = observation.key.strip()
            if key:
                # Repeated keys within one document: last one wins
                self.values[key] = observation.value

    def get(self, column: DisplayColumn) -> Optional[str]:
        for key in column.member_keys:
            if key in self.values:
                return self.values[key]
        return NOT_FOUND


def lookup_value(observations: Iterable[Observation], document_id: str, column: DisplayColumn) -> Optional[str]:
    """Value of `column` for `document_id`, or NOT_FOUND if none of its keys was seen there"""
    return DocumentLookup(observations, document_id).get(column)
