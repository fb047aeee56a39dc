"""Document loaders for uploaded files.

Loaders work on raw bytes and are selected by MIME type, falling back to the
filename suffix when the client sent a generic type.
"""

from __future__ import annotations

import io
from pathlib import PurePath

import fitz
import langid
import yaml
from docx import Document
from markdown_it import MarkdownIt

from kennisbank.core.errors import UnsupportedFormatError
from kennisbank.ingest.types import LoadedDocument
from kennisbank.models.entities import DocumentType
from kennisbank.utils.text import normalize, normalize_paragraphs

_MD = MarkdownIt()
_GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


class BaseLoader:
    """Common loader interface."""

    mime_types: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()
    document_type: DocumentType = DocumentType.TXT

    def can_load(self, mime_type: str, filename: str | None = None) -> bool:
        if mime_type in self.mime_types:
            return True
        if mime_type in _GENERIC_MIME_TYPES and filename:
            return PurePath(filename).suffix.lower() in self.suffixes
        return False

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:  # pragma: no cover - interface
        raise NotImplementedError


class TextLoader(BaseLoader):
    mime_types = ("text/plain", "text/csv", "application/json")
    suffixes = (".txt", ".text", ".log", ".csv", ".json")

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:
        text = normalize_paragraphs(_decode(data))
        return LoadedDocument(
            name=filename,
            type=self.document_type,
            text=text,
            mime_type=mime_type,
            size_bytes=len(data),
            title=PurePath(filename).stem,
            metadata={"lang": _detect_lang(text)},
        )


class MarkdownLoader(BaseLoader):
    mime_types = ("text/markdown", "text/x-markdown")
    suffixes = (".md", ".markdown", ".mdx")

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:
        front_matter, body = _split_front_matter(_decode(data))
        text = _markdown_to_text(body)
        metadata: dict[str, object] = {"lang": _detect_lang(text)}
        if front_matter:
            metadata["front_matter"] = front_matter
        title = front_matter.get("title") if front_matter else None
        return LoadedDocument(
            name=filename,
            type=self.document_type,
            text=text,
            mime_type=mime_type,
            size_bytes=len(data),
            title=str(title) if title else PurePath(filename).stem,
            metadata=metadata,
        )


class PDFLoader(BaseLoader):
    mime_types = ("application/pdf",)
    suffixes = (".pdf",)
    document_type = DocumentType.PDF

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text("text", sort=True) for page in doc]
            title = (doc.metadata or {}).get("title") or None
        text = normalize_paragraphs("\n\n".join(pages))
        return LoadedDocument(
            name=filename,
            type=self.document_type,
            text=text,
            mime_type=mime_type,
            size_bytes=len(data),
            title=title or PurePath(filename).stem,
            metadata={"page_count": len(pages), "lang": _detect_lang(text)},
        )


class DocxLoader(BaseLoader):
    mime_types = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)
    suffixes = (".docx",)
    document_type = DocumentType.DOCX

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:
        document = Document(io.BytesIO(data))
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        text = normalize_paragraphs("\n\n".join(paragraphs))
        core = document.core_properties
        metadata = {"lang": _detect_lang(text)}
        if core.author:
            metadata["author"] = core.author
        return LoadedDocument(
            name=filename,
            type=self.document_type,
            text=text,
            mime_type=mime_type,
            size_bytes=len(data),
            title=core.title or PurePath(filename).stem,
            metadata=metadata,
        )


class LoaderRegistry:
    """Registry that selects an appropriate loader for an upload."""

    def __init__(self) -> None:
        self._loaders: list[BaseLoader] = [
            TextLoader(),
            MarkdownLoader(),
            PDFLoader(),
            DocxLoader(),
        ]

    def for_upload(self, mime_type: str, filename: str | None = None) -> BaseLoader | None:
        mime = normalize_mime(mime_type)
        for loader in self._loaders:
            if loader.can_load(mime, filename):
                return loader
        return None

    def supports(self, mime_type: str, filename: str | None = None) -> bool:
        return self.for_upload(mime_type, filename) is not None

    def load(self, data: bytes, filename: str, mime_type: str) -> LoadedDocument:
        loader = self.for_upload(mime_type, filename)
        if loader is None:
            raise UnsupportedFormatError(mime_type)
        return loader.load(data, filename, normalize_mime(mime_type))


def normalize_mime(mime_type: str | None) -> str:
    """Lowercased MIME type without parameters (``; charset=...``)."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def _split_front_matter(text: str) -> tuple[dict[str, object] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            try:
                front_matter = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError:
                return None, text
            if isinstance(front_matter, dict):
                return front_matter, parts[2]
    return None, text


def _markdown_to_text(text: str) -> str:
    parts = [token.content.strip() for token in _MD.parse(text) if token.content.strip()]
    return normalize_paragraphs("\n\n".join(parts)) if parts else normalize(text)


def _detect_lang(text: str) -> str | None:
    if not text.strip():
        return None
    lang, _score = langid.classify(text)
    return lang


__all__ = [
    "BaseLoader",
    "TextLoader",
    "MarkdownLoader",
    "PDFLoader",
    "DocxLoader",
    "LoaderRegistry",
    "normalize_mime",
]
