"""
Extraction session: uploaded documents, batch processing and table state

The session owns every uploaded document and the state derived from them:
the reconciled column schema, which columns are selected, and the order the
user wants them displayed in. The schema is recomputed explicitly, once per
settled batch, from a snapshot of the completed documents.
"""

import asyncio
import hashlib
import logging
from typing import Dict, List, Optional, Sequence

from config import EXTRACTION_CONCURRENCY
from csv_exporter import build_table, export_csv
from gemini_extractor import ExtractionError
from key_reconciler import DisplayColumn, build_schema
from models import ColumnModel, FileStatus, SessionState, UploadedDocument

logger = logging.getLogger(__name__)


def make_document_id(filename: str, content: bytes) -> str:
    digest = hashlib.sha256(content).hexdigest()[:16]
    return f"{filename}-{len(content)}-{digest}"


class ExtractionSession:
    def __init__(self, extractor, concurrency: int = EXTRACTION_CONCURRENCY):
        self.extractor = extractor
        self.concurrency = max(1, concurrency)
        self.documents: List[UploadedDocument] = []
        self.schema: List[DisplayColumn] = []
        self.column_order: List[str] = []
        self.selected: set = set()
        self._columns_by_id: Dict[str, DisplayColumn] = {}
        self._completion_counter = 0
        self._batch_lock = asyncio.Lock()

    # Documents

    def add_document(self, filename: str, mime_type: str, content: bytes) -> Optional[UploadedDocument]:
        """
        Queue a document for extraction.

        Re-uploading a document whose extraction failed queues it again;
        any other duplicate is skipped and None is returned.
        """
        document_id = make_document_id(filename, content)
        existing = self.get_document(document_id)
        if existing is not None:
            if existing.status != FileStatus.ERROR:
                logger.info(f"Skipping duplicate upload {filename}")
                return None
            logger.info(f"Retrying failed document {filename}")
            existing.status = FileStatus.PENDING
            existing.error = None
            return existing

        document = UploadedDocument(id=document_id, filename=filename, mime_type=mime_type, content=content)
        self.documents.append(document)
        return document

    def get_document(self, document_id: str) -> Optional[UploadedDocument]:
        for document in self.documents:
            if document.id == document_id:
                return document
        return None

    def completed_documents(self) -> List[UploadedDocument]:
        """Completed documents in the order their extraction finished"""
        completed = [doc for doc in self.documents if doc.status == FileStatus.COMPLETED]
        return sorted(completed, key=lambda doc: doc.completed_seq)

    async def _process_document(self, document: UploadedDocument, semaphore: asyncio.Semaphore,
                                instructions: Optional[str]):
        async with semaphore:
            document.status = FileStatus.PROCESSING
            try:
                observations = await asyncio.to_thread(
                    self.extractor.extract_observations,
                    document.id,
                    document.content,
                    document.mime_type,
                    instructions,
                )
            except ExtractionError as e:
                logger.warning(f"Extraction failed for {document.filename}: {e}")
                document.status = FileStatus.ERROR
                document.error = str(e)
                return
            except Exception as e:
                logger.error(f"Unexpected error processing {document.filename}: {e}")
                document.status = FileStatus.ERROR
                document.error = str(e) or "An unknown error occurred during processing."
                return

            document.observations = list(observations)
            document.error = None
            document.status = FileStatus.COMPLETED
            self._completion_counter += 1
            document.completed_seq = self._completion_counter

    async def process_pending(self, instructions: Optional[str] = None) -> SessionState:
        """Extract every pending document concurrently, then recompute the schema once"""
        async with self._batch_lock:
            pending = [doc for doc in self.documents if doc.status == FileStatus.PENDING]
            if pending:
                logger.info(f"Processing batch of {len(pending)} document(s)")
                semaphore = asyncio.Semaphore(self.concurrency)
                await asyncio.gather(*[
                    self._process_document(doc, semaphore, instructions) for doc in pending
                ])
                self.recompute_schema()
            return self.state()

    # Schema, selection and order

    def recompute_schema(self) -> List[DisplayColumn]:
        """Rebuild the schema from completed documents in upload order"""
        snapshot = [
            observation
            for doc in self.documents if doc.status == FileStatus.COMPLETED
            for observation in doc.observations
        ]
        self.schema = build_schema(snapshot)
        self._columns_by_id = {column.column_id: column for column in self.schema}
        self.column_order = [column.column_id for column in self.schema]
        self.selected = set(self.column_order)
        logger.info(f"Schema recomputed: {len(self.schema)} column(s) from {len(snapshot)} observation(s)")
        return self.schema

    def _require_column(self, column_id: str) -> DisplayColumn:
        if column_id not in self._columns_by_id:
            raise KeyError(column_id)
        return self._columns_by_id[column_id]

    def toggle_column(self, column_id: str) -> bool:
        self._require_column(column_id)
        if column_id in self.selected:
            self.selected.discard(column_id)
            return False
        self.selected.add(column_id)
        return True

    def set_selection(self, column_ids: Sequence[str]):
        for column_id in column_ids:
            self._require_column(column_id)
        self.selected = set(column_ids)

    def select_all(self):
        self.selected = set(self.column_order)

    def deselect_all(self):
        self.selected = set()

    def set_column_order(self, column_ids: Sequence[str]):
        if sorted(column_ids) != sorted(self.column_order):
            raise ValueError("Column order must list every current column exactly once")
        self.column_order = list(column_ids)

    def ordered_columns(self) -> List[DisplayColumn]:
        return [self._columns_by_id[column_id] for column_id in self.column_order]

    def displayed_columns(self) -> List[DisplayColumn]:
        return [column for column in self.ordered_columns() if column.column_id in self.selected]

    # Output

    def _document_rows(self):
        return [(doc.filename, doc.observations) for doc in self.completed_documents()]

    def table(self):
        return build_table(self.displayed_columns(), self._document_rows())

    def export_csv(self) -> str:
        return export_csv(self.displayed_columns(), self._document_rows())

    def state(self) -> SessionState:
        columns = [
            ColumnModel(
                id=column.column_id,
                display_key=column.display_key,
                member_keys=list(column.member_keys),
                selected=column.column_id in self.selected,
            )
            for column in self.ordered_columns()
        ]
        return SessionState(
            documents=[doc.to_status() for doc in self.documents],
            columns=columns,
            completed=sum(1 for doc in self.documents if doc.status == FileStatus.COMPLETED),
            failed=sum(1 for doc in self.documents if doc.status == FileStatus.ERROR),
            pending=sum(1 for doc in self.documents if doc.status in (FileStatus.PENDING, FileStatus.PROCESSING)),
        )

    def reset(self):
        self.documents = []
        self.schema = []
        self.column_order = []
        self.selected = set()
        self._columns_by_id = {}
        self._completion_counter = 0
