"""
Document key/value extraction with Google Gemini

Each document is sent to Gemini as inline data together with an extraction
prompt. The model answers with a JSON array of row objects; this module
validates that shape, coerces every value to a string and flattens the rows
into Observations for key reconciliation.

Failures of any kind (missing API key, network, blocked or malformed output)
are raised as ExtractionError so callers can mark a single document as failed
without affecting the rest of the batch.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import google.generativeai as genai

from config import GEMINI_API_KEY, GEMINI_MODEL
from key_reconciler import Observation

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when a document could not be turned into key/value rows"""


EXTRACTION_PROMPT = """
You are an expert data extraction AI. Your task is to extract structured data from the provided document.
The document may contain both document-level fields (e.g., "Invoice Number", "Date") and tabular data (e.g., a list of line items).
Your goal is to return a JSON array of objects, where each object represents a single row of data.

- If the document contains a table, each row of that table should become one object in the output array.
- Any document-level fields that apply to the entire document should be included in *every* object in the array.
- If the document is a simple form without a table, return a JSON array containing a *single object* with all the extracted key-value pairs.
- The keys in the JSON objects should be the labels found in the document.
- Consolidate multi-line values into a single string with spaces.
- If the document does not contain clear key-value pairs or tabular data, return an empty array.

For example, for an invoice with two line items, the output should look like this:
[
  { "Invoice Number": "123", "Date": "2024-01-01", "Description": "Product A", "Quantity": "2", "Price": "10.00" },
  { "Invoice Number": "123", "Date": "2024-01-01", "Description": "Product B", "Quantity": "1", "Price": "20.00" }
]

If the document is a business card, the output should be:
[
  { "Name": "John Doe", "Title": "Software Engineer", "Phone": "555-1234" }
]

Return ONLY the JSON array. Do not return any other text, explanations, or markdown formatting.
"""

HEADER_PROMPT = """
Analyze the attached documents. Based on their content, suggest a comprehensive list of column headers for data extraction.
Consider all fields present, including document-level fields and fields within line items.
Return ONLY a JSON array of strings.
"""


def clean_json_response(response_text: str) -> str:
    """Strip markdown code fences around a JSON answer"""
    response_text = response_text.strip()
    if response_text.startswith("```json"):
        response_text = response_text[7:]
    if response_text.startswith("```"):
        response_text = response_text[3:]
    if response_text.endswith("```"):
        response_text = response_text[:-3]
    return response_text.strip()


def coerce_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def parse_rows(response_text: str) -> List[Dict[str, str]]:
    """
    Validate a model answer and return its rows with string values.

    An empty answer means the document had nothing extractable. Anything
    other than an array of objects is rejected.
    """
    json_text = clean_json_response(response_text or "")
    if not json_text:
        return []

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"AI returned invalid JSON: {e.msg}") from e

    if not isinstance(parsed, list):
        raise ExtractionError("Invalid data format received from AI. Expected an array.")

    if not all(isinstance(item, dict) for item in parsed):
        raise ExtractionError("Invalid item format in data received from AI. Expected an array of objects.")

    return [{str(k): coerce_value(v) for k, v in item.items()} for item in parsed]


def rows_to_observations(document_id: str, rows: List[Dict[str, str]]) -> List[Observation]:
    """
    Flatten rows into observations.

    When every row is shaped exactly {"key": ..., "value": ...} the answer is
    a pair list and each row is one observation. Otherwise every row
    contributes one observation per property.
    """
    if rows and all(set(row) == {"key", "value"} for row in rows):
        return [Observation(key=row["key"], value=row["value"], document_id=document_id) for row in rows]

    observations = []
    for row in rows:
        for key, value in row.items():
            observations.append(Observation(key=key, value=value, document_id=document_id))
    return observations


class GeminiExtractor:
    """Key/value extraction client backed by a Gemini multimodal model"""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = GEMINI_API_KEY if api_key is None else api_key
        self.model_name = model_name or GEMINI_MODEL
        self.model = None

        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(
                self.model_name,
                generation_config={"response_mime_type": "application/json"},
            )
            logger.info(f"Gemini extractor initialized with {self.model_name}")
        else:
            logger.warning("GEMINI_API_KEY not set; extraction requests will fail")

    @property
    def is_configured(self) -> bool:
        return self.model is not None

    def _generate(self, parts: List[Any]) -> str:
        if not self.is_configured:
            raise ExtractionError("Server configuration error: API key not found.")
        try:
            response = self.model.generate_content(parts)
            return response.text
        except Exception as e:
            logger.error(f"Gemini API call failed: {e}")
            raise ExtractionError(f"Failed to process document with AI. {e}") from e

    def extract_rows(self, content: bytes, mime_type: str, instructions: Optional[str] = None) -> List[Dict[str, str]]:
        """Extract row objects from one document"""
        prompt = EXTRACTION_PROMPT
        if instructions:
            prompt += f"\nFollow these additional instructions carefully: {instructions}\n"

        response_text = self._generate([
            {"mime_type": mime_type, "data": content},
            prompt,
        ])
        rows = parse_rows(response_text)
        logger.info(f"Gemini returned {len(rows)} row(s)")
        return rows

    def extract_observations(self, document_id: str, content: bytes, mime_type: str,
                             instructions: Optional[str] = None) -> List[Observation]:
        rows = self.extract_rows(content, mime_type, instructions)
        return rows_to_observations(document_id, rows)

    def suggest_headers(self, documents: Sequence[Tuple[bytes, str]]) -> List[str]:
        """Ask the model for column headers covering a batch of (content, mime_type) documents"""
        if not documents:
            raise ExtractionError("No files provided for header identification.")

        parts: List[Any] = [{"mime_type": mime_type, "data": content} for content, mime_type in documents]
        parts.append(HEADER_PROMPT)
        json_text = clean_json_response(self._generate(parts))

        try:
            headers = json.loads(json_text)
        except json.JSONDecodeError as e:
            raise ExtractionError("AI returned an invalid format for headers.") from e

        if not isinstance(headers, list) or not all(isinstance(h, str) for h in headers):
            raise ExtractionError("AI returned an invalid format for headers.")
        return headers
