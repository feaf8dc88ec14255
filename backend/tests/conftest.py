"""
Shared fixtures for extraction and reconciliation tests.
"""

import time
from typing import Dict, List, Optional

import pytest

from gemini_extractor import ExtractionError, rows_to_observations
from key_reconciler import Observation


class FakeExtractor:
    """
    Stand-in for GeminiExtractor keyed by document content.

    `responses` maps document bytes to a list of rows or an exception to
    raise; `delays` optionally holds per-document sleep times so tests can
    control completion order.
    """

    def __init__(self, responses: Dict[bytes, object], delays: Optional[Dict[bytes, float]] = None,
                 headers: Optional[List[str]] = None):
        self.responses = responses
        self.delays = delays or {}
        self.headers = headers or []
        self.calls = []
        self.is_configured = True

    def extract_rows(self, content, mime_type, instructions=None):
        self.calls.append((content, mime_type, instructions))
        time.sleep(self.delays.get(content, 0))
        response = self.responses[content]
        if isinstance(response, Exception):
            raise response
        return response

    def extract_observations(self, document_id, content, mime_type, instructions=None):
        return rows_to_observations(document_id, self.extract_rows(content, mime_type, instructions))

    def suggest_headers(self, documents):
        if not documents:
            raise ExtractionError("No files provided for header identification.")
        return self.headers


def make_observations(document_id: str, pairs) -> List[Observation]:
    return [Observation(key=key, value=value, document_id=document_id) for key, value in pairs]


@pytest.fixture
def bilingual_observations():
    """Two documents carrying the same names under an English and a Hindi label"""
    return (
        make_observations("D1", [("Name", "Alice"), ("नाम", "Alice"), ("Age", "30")])
        + make_observations("D2", [("Name", "Bob"), ("नाम", "Bob"), ("Age", "40")])
    )
