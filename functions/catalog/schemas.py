"""
Pydantic schemas for the catalog HTTP API.
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field


class BookPayload(BaseModel):
    # Unknown field names (e.g. a misspelt "intraduction") are rejected.
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    introduction: str = ""
    count: int = Field(0, ge=0)


class BookResponse(BaseModel):
    id: Union[int, str]
    name: str
    author: str
    introduction: str
    count: int


class ListBooksResponse(BaseModel):
    books: list[BookResponse]


class UploadResponse(BaseModel):
    name: str
    path: str
    url: str


class PublicUrlResponse(BaseModel):
    path: str
    url: str


class FunctionErrorResponse(BaseModel):
    error: str
