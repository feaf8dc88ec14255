from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
import asyncio
import base64
import binascii
import logging
import mimetypes
from typing import Optional, List, Dict

from config import ACCEPTED_MIME_TYPES, MAX_BATCH_FILES, MAX_FILE_SIZE_MB, LOG_LEVEL
from csv_exporter import EXPORT_FILENAME
from gemini_extractor import GeminiExtractor, ExtractionError
from models import (
    BatchUploadResponse,
    ColumnOrderRequest,
    ExtractRequest,
    HeaderSuggestionResponse,
    SelectionRequest,
    SessionState,
    TableResponse,
)
from session import ExtractionSession

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Document Key-Value Extractor API",
    description="Extract key/value data from documents with Gemini and reconcile it into one table",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

extractor = GeminiExtractor()
session = ExtractionSession(extractor)


@app.get("/")
async def root():
    return {"message": "Document Key-Value Extractor API is running", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "Document Key-Value Extractor API",
        "model_configured": extractor.is_configured,
    }


def resolve_mime_type(filename: str, content_type: Optional[str]) -> Optional[str]:
    """MIME type of an upload, guessed from the filename when the client sent none"""
    if content_type and content_type != "application/octet-stream":
        return content_type
    return mimetypes.guess_type(filename)[0]


async def read_upload(file: UploadFile) -> Dict:
    """Read and validate one uploaded file; raises HTTPException on bad input"""
    if not file.filename:
        raise HTTPException(status_code=400, detail="File has no filename")

    mime_type = resolve_mime_type(file.filename, file.content_type)
    if mime_type not in ACCEPTED_MIME_TYPES:
        raise HTTPException(status_code=400, detail=f"File type not supported: {file.filename} ({mime_type})")

    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail=f"File is empty: {file.filename}")
    if len(content) > MAX_FILE_SIZE_MB * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"File size exceeds {MAX_FILE_SIZE_MB}MB: {file.filename}")

    return {"filename": file.filename, "mime_type": mime_type, "content": content}


async def read_uploads(files: List[UploadFile]) -> List[Dict]:
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > MAX_BATCH_FILES:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_BATCH_FILES} files allowed per batch")
    # Validate the whole batch before queueing anything
    return [await read_upload(file) for file in files]


@app.post("/api/extract")
async def extract_document(request: ExtractRequest):
    """
    Extract rows from a single base64-encoded document.

    Returns the model's rows as a JSON array of objects with string values.
    """
    if not request.image or not request.mime_type:
        raise HTTPException(status_code=400, detail="Missing image data or mimeType")

    try:
        content = base64.b64decode(request.image, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image data is not valid base64")

    try:
        return await asyncio.to_thread(extractor.extract_rows, content, request.mime_type)
    except ExtractionError as e:
        logger.error(f"Extraction request failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/documents", response_model=BatchUploadResponse)
async def upload_documents(files: List[UploadFile] = File(...), instructions: Optional[str] = Form(None)):
    """Add documents to the session and extract them concurrently"""
    uploads = await read_uploads(files)

    added = 0
    skipped = []
    for upload in uploads:
        if session.add_document(upload["filename"], upload["mime_type"], upload["content"]) is None:
            skipped.append(upload["filename"])
        else:
            added += 1

    state = await session.process_pending(instructions=instructions or None)

    return BatchUploadResponse(
        success=True,
        total_files=len(uploads),
        added=added,
        skipped=skipped,
        state=state,
        message=f"Processed {added} document(s): {state.completed} completed, {state.failed} failed",
    )


@app.get("/api/documents", response_model=SessionState)
async def get_documents():
    return session.state()


@app.delete("/api/documents")
async def reset_documents():
    session.reset()
    return JSONResponse(status_code=200, content={"success": True, "message": "Session cleared"})


@app.get("/api/schema", response_model=SessionState)
async def get_schema():
    return session.state()


@app.put("/api/selection", response_model=SessionState)
async def set_selection(request: SelectionRequest):
    try:
        session.set_selection(request.column_ids)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Unknown column: {e.args[0]}")
    return session.state()


@app.post("/api/selection/all", response_model=SessionState)
async def select_all_columns():
    session.select_all()
    return session.state()


@app.delete("/api/selection", response_model=SessionState)
async def deselect_all_columns():
    session.deselect_all()
    return session.state()


@app.post("/api/columns/{column_id}/toggle", response_model=SessionState)
async def toggle_column(column_id: str):
    try:
        session.toggle_column(column_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown column: {column_id}")
    return session.state()


@app.put("/api/columns/order", response_model=SessionState)
async def set_column_order(request: ColumnOrderRequest):
    try:
        session.set_column_order(request.column_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.state()


@app.get("/api/table", response_model=TableResponse)
async def get_table():
    headers, rows = session.table()
    return TableResponse(headers=headers, rows=rows)


@app.get("/api/export")
async def export_table():
    csv_text = session.export_csv()
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@app.post("/api/headers/suggest", response_model=HeaderSuggestionResponse)
async def suggest_headers(files: List[UploadFile] = File(...)):
    """Ask the model for a column header list covering the uploaded documents"""
    uploads = await read_uploads(files)
    try:
        documents = [(u["content"], u["mime_type"]) for u in uploads]
        headers = await asyncio.to_thread(extractor.suggest_headers, documents)
    except ExtractionError as e:
        logger.error(f"Header suggestion failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return HeaderSuggestionResponse(headers=headers)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
