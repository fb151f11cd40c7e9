"""
Interfaces for external document collaborators: storage, OCR and URL fetching.
Concrete adapters are provided by the deployment.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .errors import InvalidInput

logger = logging.getLogger(__name__)


class StorageResult(BaseModel):
    success: bool
    location_ref: Optional[str] = None
    error: Optional[str] = None


class OCRResult(BaseModel):
    success: bool
    text: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    error: Optional[str] = None


class FetchResult(BaseModel):
    success: bool
    raw_content: Optional[str] = None
    error: Optional[str] = None


class StorageAdapter:
    """Abstract base class for document storage."""

    async def upload(self, data: bytes, key: str) -> StorageResult:
        raise NotImplementedError


class OCRAdapter:
    """Abstract base class for text extraction from stored documents."""

    async def extract_text(self, document_ref: str) -> OCRResult:
        raise NotImplementedError


class URLFetchAdapter:
    """Abstract base class for retrieving contract text from a URL."""

    async def fetch(self, url: str) -> FetchResult:
        raise NotImplementedError


class DocumentSource(BaseModel):
    """Exactly one of text, url or document_ref."""
    text: Optional[str] = None
    url: Optional[str] = None
    document_ref: Optional[str] = None

    @model_validator(mode="after")
    def check_single_source(self):
        provided = [name for name in ("text", "url", "document_ref") if getattr(self, name)]
        if len(provided) != 1:
            raise ValueError("Provide exactly one of text, url or document_ref")
        return self


class DocumentSourceResolver:
    """Turns a DocumentSource into contract text using the injected adapters."""

    def __init__(
        self,
        ocr: Optional[OCRAdapter] = None,
        fetcher: Optional[URLFetchAdapter] = None
    ):
        self.ocr = ocr
        self.fetcher = fetcher

    async def resolve(self, source: DocumentSource) -> str:
        """
        Resolve a source to text.

        Raises:
            InvalidInput: No adapter for the source, or the adapter failed
        """
        if source.text:
            return source.text

        if source.url:
            if self.fetcher is None:
                raise InvalidInput("URL sources are not supported: no fetch adapter configured")
            result = await self.fetcher.fetch(source.url)
            if not result.success or not result.raw_content:
                raise InvalidInput(f"Could not fetch {source.url}: {result.error or 'empty content'}")
            logger.info(f"Fetched {len(result.raw_content)} characters from {source.url}")
            return result.raw_content

        if self.ocr is None:
            raise InvalidInput("Document sources are not supported: no OCR adapter configured")
        result = await self.ocr.extract_text(source.document_ref)
        if not result.success or not result.text:
            raise InvalidInput(
                f"Text extraction failed for {source.document_ref}: {result.error or 'no text'}"
            )
        logger.info(f"Extracted {len(result.text)} characters from {source.document_ref}")
        return result.text
