"""
Document loader module for fetching study resources and extracting plain text.
Supports PDF, DOCX, plain text, Markdown, HTML, JSON and CSV sources.
"""
import html
import io
import json
import logging
import mimetypes
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from .exceptions import DocumentLoadError, UnsupportedFormatError

logger = logging.getLogger(__name__)


class FileType(Enum):
    """Document formats the loader can classify."""
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"
    HTML = "html"
    JSON = "json"
    CSV = "csv"
    UNKNOWN = "unknown"


# Checked in order against the lowercased MIME type
MIME_MARKERS = [
    ("pdf", FileType.PDF),
    ("word", FileType.DOCX),
    ("docx", FileType.DOCX),
    ("text/plain", FileType.TXT),
    ("markdown", FileType.MD),
    ("md", FileType.MD),
    ("html", FileType.HTML),
    ("json", FileType.JSON),
    ("csv", FileType.CSV),
]

EXTENSION_TYPES = {
    "pdf": FileType.PDF,
    "docx": FileType.DOCX,
    "doc": FileType.DOCX,
    "txt": FileType.TXT,
    "md": FileType.MD,
    "markdown": FileType.MD,
    "html": FileType.HTML,
    "htm": FileType.HTML,
    "json": FileType.JSON,
    "csv": FileType.CSV,
}

SCRIPT_STYLE_PATTERN = re.compile(
    r'<(script|style)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL
)
TAG_PATTERN = re.compile(r'<[^>]*>?')
CONTROL_CHARS_PATTERN = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f]')

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _source_path(source_ref: str) -> str:
    """Path component of a URL, or the reference itself for local paths."""
    if "://" in source_ref:
        return urlparse(source_ref).path
    return source_ref


def get_file_type(source_ref: str, mime_type: Optional[str] = None) -> FileType:
    """
    Determine file type from MIME type, falling back to the file extension.

    Args:
        source_ref: URL or path of the file
        mime_type: Declared or sniffed MIME type (optional)

    Returns:
        FileType
    """
    if mime_type:
        mime = mime_type.lower()
        for marker, file_type in MIME_MARKERS:
            if marker in mime:
                return file_type

    extension = PurePosixPath(_source_path(source_ref)).suffix.lower().lstrip('.')
    return EXTENSION_TYPES.get(extension, FileType.UNKNOWN)


@dataclass
class Document:
    """Represents a loaded document."""
    content: str
    source: str  # URL or file path
    title: str
    file_type: FileType
    metadata: Dict[str, Any]


class DocumentLoader:
    """
    Fetches resource bytes and extracts text by document type.
    Every failure is raised as DocumentLoadError with the original cause.
    """

    def __init__(
        self,
        config_or_timeout: Union[float, Any] = 30,
        max_bytes: int = 50 * 1024 * 1024,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize document loader.

        Args:
            config_or_timeout: LoaderConfig object or download timeout in seconds
            max_bytes: Largest accepted payload
            session: Optional requests session for downloads
        """
        if hasattr(config_or_timeout, 'max_bytes'):
            self.timeout = config_or_timeout.timeout
            self.max_bytes = config_or_timeout.max_bytes
        else:
            self.timeout = config_or_timeout
            self.max_bytes = max_bytes

        self._session = session or requests.Session()

    def load_document_content(self, source_ref: str, mime_type: Optional[str] = None) -> str:
        """
        Load a source and return its extracted text.

        Args:
            source_ref: http(s) URL, file:// URL or local path
            mime_type: Declared MIME type, preferred over the response header

        Returns:
            Extracted text content
        """
        return self.load_document(source_ref, mime_type).content

    def load_document(
        self,
        source_ref: str,
        mime_type: Optional[str] = None,
        title: Optional[str] = None
    ) -> Document:
        """
        Load a source into a Document with title and metadata.

        Args:
            source_ref: http(s) URL, file:// URL or local path
            mime_type: Declared MIME type, preferred over the response header
            title: Title override

        Returns:
            Document object
        """
        try:
            data, content_type = self.fetch(source_ref)
            file_type = get_file_type(source_ref, mime_type or content_type)
            content = self.extract_text(data, file_type, source_ref)
        except DocumentLoadError:
            raise
        except Exception as e:
            logger.error(f"Error loading document content from {source_ref}: {e}")
            raise DocumentLoadError(
                f"Failed to load document content: {e}", cause=e
            ) from e

        logger.info(
            f"Extracted {len(content)} characters from {source_ref} ({file_type.value})"
        )

        return Document(
            content=content,
            source=source_ref,
            title=title or self._extract_title(content, source_ref),
            file_type=file_type,
            metadata={
                'file_type': file_type.value,
                'content_type': mime_type or content_type,
                'size_bytes': len(data),
            }
        )

    def fetch(self, source_ref: str) -> Tuple[bytes, Optional[str]]:
        """
        Download or read the raw bytes of a source.

        Returns:
            Tuple of (bytes, content type or None)
        """
        parsed = urlparse(source_ref)

        if parsed.scheme in ('http', 'https'):
            return self._fetch_url(source_ref)

        if parsed.scheme == 'file':
            path = Path(url2pathname(parsed.path))
        else:
            path = Path(source_ref)

        if not path.is_file():
            raise DocumentLoadError(f"File not found: {path}")

        size = path.stat().st_size
        if size > self.max_bytes:
            raise DocumentLoadError(f"{path} is {size} bytes, limit is {self.max_bytes}")

        return path.read_bytes(), mimetypes.guess_type(str(path))[0]

    def _fetch_url(self, url: str) -> Tuple[bytes, Optional[str]]:
        try:
            response = self._session.get(url, timeout=self.timeout, stream=True)
            try:
                response.raise_for_status()
                data = self._read_limited(response, url)
            finally:
                response.close()
        except requests.Timeout as e:
            raise DocumentLoadError(
                f"Timed out after {self.timeout}s downloading {url}", cause=e, transient=True
            ) from e
        except requests.RequestException as e:
            raise DocumentLoadError(f"Failed to download {url}: {e}", cause=e) from e

        return data, response.headers.get('Content-Type')

    def _read_limited(self, response: requests.Response, url: str) -> bytes:
        """Read a streamed body, stopping as soon as it exceeds max_bytes."""
        declared = response.headers.get('Content-Length')
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise DocumentLoadError(f"{url} is {declared} bytes, limit is {self.max_bytes}")

        buffer = bytearray()
        for block in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
            buffer.extend(block)
            if len(buffer) > self.max_bytes:
                raise DocumentLoadError(f"{url} exceeds the {self.max_bytes} byte limit")

        return bytes(buffer)

    def extract_text(self, data: bytes, file_type: FileType, source: str = "inline") -> str:
        """
        Extract text from raw bytes of a known type.

        Args:
            data: Raw document bytes
            file_type: Classified document type
            source: Source reference, for error messages

        Returns:
            Extracted, cleaned text
        """
        if file_type == FileType.PDF:
            text = self._extract_pdf(data, source)
        elif file_type == FileType.DOCX:
            text = self._extract_docx(data, source)
        elif file_type in (FileType.TXT, FileType.MD, FileType.CSV):
            text = self._decode_text(data)
        elif file_type == FileType.HTML:
            text = self._strip_html(self._decode_text(data))
        elif file_type == FileType.JSON:
            text = json.dumps(json.loads(self._decode_text(data)), indent=2, ensure_ascii=False)
        else:
            try:
                text = data.decode('utf-8')
            except UnicodeDecodeError as e:
                raise UnsupportedFormatError(
                    file_type.value, source, "content is not UTF-8 text"
                ) from e

        return self._clean_text(text)

    def _extract_pdf(self, data: bytes, source: str) -> str:
        """Extract page text with PyPDF2."""
        from PyPDF2 import PdfReader

        reader = PdfReader(io.BytesIO(data))
        content_parts = []

        for page_num, page in enumerate(reader.pages):
            text = page.extract_text()
            if text and text.strip():
                content_parts.append(f"[Page {page_num + 1}]\n{text}")

        if not content_parts:
            # Scanned PDFs have no text layer
            raise UnsupportedFormatError(FileType.PDF.value, source, "no extractable text")

        return '\n\n'.join(content_parts)

    def _extract_docx(self, data: bytes, source: str) -> str:
        """Extract paragraphs and table rows with python-docx."""
        from docx import Document as DocxDocument

        doc = DocxDocument(io.BytesIO(data))
        parts = [para.text for para in doc.paragraphs if para.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        if not parts:
            raise UnsupportedFormatError(FileType.DOCX.value, source, "no extractable text")

        return '\n'.join(parts)

    @staticmethod
    def _decode_text(data: bytes) -> str:
        # Try UTF-8 first, then fall back to latin-1
        try:
            return data.decode('utf-8-sig')
        except UnicodeDecodeError:
            return data.decode('latin-1')

    @staticmethod
    def _strip_html(markup: str) -> str:
        """Regex tag stripper; not a full HTML parser."""
        markup = SCRIPT_STYLE_PATTERN.sub(' ', markup)
        return html.unescape(TAG_PATTERN.sub(' ', markup))

    @staticmethod
    def _clean_text(text: str) -> str:
        """Remove null bytes and control characters."""
        return CONTROL_CHARS_PATTERN.sub('', text)

    def _extract_title(self, content: str, source: str) -> str:
        """Extract title from content or use filename."""
        # Try to find markdown title (# Title)
        match = re.search(r'^#\s+(.+)$', content, re.MULTILINE)
        if match:
            return match.group(1).strip()

        # Try to find first line as title
        lines = content.strip().split('\n')
        first_line = lines[0].strip() if lines else ""
        if first_line and len(first_line) < 100 and not first_line.startswith('[Page '):
            first_line = re.sub(r'^#+\s*', '', first_line)
            if first_line:
                return first_line

        # Fall back to filename
        stem = PurePosixPath(_source_path(source)).stem or "Untitled"
        return stem.replace('_', ' ').replace('-', ' ').title()
