"""Unit tests for document sources and collaborator adapters."""

import asyncio

import pytest
from pydantic import ValidationError

from clearclause.collaborators import (
    DocumentSource,
    DocumentSourceResolver,
    FetchResult,
    OCRAdapter,
    OCRResult,
    URLFetchAdapter,
)
from clearclause.errors import InvalidInput

from conftest import CONTRACT


class StaticFetcher(URLFetchAdapter):
    def __init__(self, result: FetchResult):
        self.result = result
        self.urls = []

    async def fetch(self, url: str) -> FetchResult:
        self.urls.append(url)
        return self.result


class StaticOCR(OCRAdapter):
    def __init__(self, result: OCRResult):
        self.result = result

    async def extract_text(self, document_ref: str) -> OCRResult:
        return self.result


class TestDocumentSource:
    def test_exactly_one_source(self):
        with pytest.raises(ValidationError):
            DocumentSource()
        with pytest.raises(ValidationError):
            DocumentSource(text=CONTRACT, url="https://example.com/c.txt")

    def test_ocr_confidence_bounded(self):
        with pytest.raises(ValidationError):
            OCRResult(success=True, text="x", confidence=1.5)


class TestResolver:
    def test_text_passes_through(self):
        assert asyncio.run(DocumentSourceResolver().resolve(DocumentSource(text=CONTRACT))) == CONTRACT

    def test_url_fetched(self):
        fetcher = StaticFetcher(FetchResult(success=True, raw_content=CONTRACT))
        resolver = DocumentSourceResolver(fetcher=fetcher)

        text = asyncio.run(resolver.resolve(DocumentSource(url="https://example.com/c.txt")))

        assert text == CONTRACT
        assert fetcher.urls == ["https://example.com/c.txt"]

    def test_failed_fetch(self):
        fetcher = StaticFetcher(FetchResult(success=False, error="404"))
        with pytest.raises(InvalidInput, match="404"):
            asyncio.run(DocumentSourceResolver(fetcher=fetcher).resolve(DocumentSource(url="https://x.test")))

    def test_document_ref_uses_ocr(self):
        ocr = StaticOCR(OCRResult(success=True, text=CONTRACT, confidence=0.92))
        text = asyncio.run(DocumentSourceResolver(ocr=ocr).resolve(DocumentSource(document_ref="docs/msa.pdf")))
        assert text == CONTRACT

    def test_document_ref_without_ocr(self):
        with pytest.raises(InvalidInput):
            asyncio.run(DocumentSourceResolver().resolve(DocumentSource(document_ref="docs/msa.pdf")))

    def test_empty_ocr_text(self):
        ocr = StaticOCR(OCRResult(success=True, text=""))
        with pytest.raises(InvalidInput, match="no text"):
            asyncio.run(DocumentSourceResolver(ocr=ocr).resolve(DocumentSource(document_ref="scan.png")))
