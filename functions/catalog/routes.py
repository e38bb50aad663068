"""
HTTP routes for the catalog API.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, Response, UploadFile
from fastapi.responses import JSONResponse

from catalog.blobs import BlobStore
from catalog.dependencies import (
    Backend,
    get_backend,
    get_blob_store,
    get_function_client,
    get_record_store,
)
from catalog.errors import CatalogError
from catalog.functions import FunctionClient
from catalog.records import Book, RecordStore
from catalog.schemas import (
    BookPayload,
    BookResponse,
    FunctionErrorResponse,
    ListBooksResponse,
    PublicUrlResponse,
    UploadResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FUNCTION_ERROR = "Failed to call edge function"


def _to_response(book: Book) -> BookResponse:
    return BookResponse(**book.as_dict())


@router.get("/books", response_model=ListBooksResponse)
def list_books(records: RecordStore = Depends(get_record_store)):
    return ListBooksResponse(books=[_to_response(b) for b in records.list()])


@router.post("/books", response_model=BookResponse, status_code=201)
def create_book(
    payload: BookPayload, records: RecordStore = Depends(get_record_store)
):
    created = records.create(Book.from_dict(payload.model_dump()))
    return _to_response(created)


@router.get("/books/{book_id}", response_model=BookResponse)
def get_book(book_id: str, records: RecordStore = Depends(get_record_store)):
    book = records.get(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return _to_response(book)


@router.put("/books/{book_id}", response_model=BookResponse)
def update_book(
    book_id: str,
    payload: BookPayload,
    records: RecordStore = Depends(get_record_store),
):
    """
    Update a book in place. Unknown ids are a silent no-op, matching the
    store's policy; the request body is echoed back either way.
    """
    existing = records.get(book_id)
    book = Book.from_dict(
        {**payload.model_dump(), "id": existing.id if existing else book_id}
    )
    return _to_response(records.update(book))


@router.delete("/books/{book_id}", status_code=204)
def delete_book(book_id: str, records: RecordStore = Depends(get_record_store)):
    records.delete(book_id)
    return Response(status_code=204)


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    blobs: BlobStore = Depends(get_blob_store),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File required")
    content = await file.read()
    path = blobs.upload(content, file.filename, file.content_type)
    return UploadResponse(
        name=file.filename, path=path, url=blobs.resolve_public_url(path)
    )


@router.get("/files/url", response_model=PublicUrlResponse)
def file_url(
    path: str = Query(..., description="Object path in storage"),
    blobs: BlobStore = Depends(get_blob_store),
):
    return PublicUrlResponse(path=path, url=blobs.resolve_public_url(path))


@router.get("/files/download")
def download_file(
    path: str = Query(..., description="Object path in storage"),
    blobs: BlobStore = Depends(get_blob_store),
):
    content = blobs.download(path)
    filename = path.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"
        },
    )


def _invoke(functions: FunctionClient, name: str, body: dict):
    try:
        return functions.invoke(name, body)
    except CatalogError as exc:
        logger.error("Error calling edge function %s: %s", name, exc)
        return JSONResponse({"error": FUNCTION_ERROR}, status_code=500)


@router.get("/edge-function", responses={500: {"model": FunctionErrorResponse}})
def call_edge_function(
    backend: Backend = Depends(get_backend),
    functions: FunctionClient = Depends(get_function_client),
):
    settings = backend.settings
    return _invoke(
        functions,
        settings.edge_function_name,
        {"name": settings.edge_function_caller},
    )


@router.post("/edge-function", responses={500: {"model": FunctionErrorResponse}})
def post_edge_function(
    payload: Optional[dict] = Body(None),
    backend: Backend = Depends(get_backend),
    functions: FunctionClient = Depends(get_function_client),
):
    settings = backend.settings
    body = payload if payload else {"name": settings.edge_function_caller}
    return _invoke(functions, settings.edge_function_name, body)


@router.post("/functions/{name}", responses={500: {"model": FunctionErrorResponse}})
def invoke_function(
    name: str,
    payload: Optional[dict] = Body(None),
    functions: FunctionClient = Depends(get_function_client),
):
    return _invoke(functions, name, payload or {})
