"""Knowledge-base document processors.

Two functions are registered on the function registry:

- ``process-document``: PDFs, web pages, YouTube links, audio recordings
  and any text-like upload
- ``kb-process-textfile``: plain text uploads and pasted snippets

Both move the document to ``processing``, extract its text, split it into
chunks and finish with ``completed`` (chunk_count, token_count) or
``error`` (processing_error). They never raise to the invoker.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

import fitz
import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from classroom.backend.functions import FunctionRegistry
from classroom.backend.storage import BucketStore, get_bucket_store
from classroom.config.app_config import load_app_config
from classroom.db import documents_repository

logger = structlog.get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (classroom) Knowledge Base Ingestion Bot"
FETCH_TIMEOUT = 30.0

TEXT_FILE_TYPES = ("text/plain", "text/markdown", "text/csv", "application/json")
TEXT_EXTENSIONS = (".txt", ".md", ".markdown", ".csv")

LLMFactory = Callable[[], Any]


class DocumentProcessingError(Exception):
    """Text could not be extracted from a document."""

    pass


# =============================================================================
# CHUNKING
# =============================================================================


@dataclass
class TextChunk:
    content: str
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


# Markdown headers, bold lead-ins and [n] markers followed by a title line
SECTION_PATTERN = re.compile(r"(?:^|\n)(?:#{1,6}|\*\*|\[\d+\])\s+.+\n")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_END = re.compile(r"[.!?]\s+")


def estimate_token_count(text: str) -> int:
    """About 4 characters per token, plus a 10% margin."""
    return math.ceil(len(text) / 4 * 1.1)


def chunk_text(
    text: str,
    max_tokens: int = 1000,
    overlap_tokens: int = 50,
    preserve_sections: bool = True,
    preserve_paragraphs: bool = True,
) -> list[TextChunk]:
    """Split text into chunks of at most ~max_tokens.

    Sections (markdown headers) are kept whole when they fit; otherwise
    paragraphs are packed together; text without structure falls back to
    a sliding window that prefers sentence and word boundaries.
    """
    normalized = text.replace("\r\n", "\n")
    chunks: list[TextChunk] = []

    if preserve_sections:
        sections = SECTION_PATTERN.split(normalized)
        headers = SECTION_PATTERN.findall(normalized)
        if len(sections) > 1:
            for idx, body in enumerate(sections):
                section_text = (headers[idx - 1] if idx > 0 else "") + body
                if not section_text.strip():
                    continue
                tokens = estimate_token_count(section_text)
                if tokens <= max_tokens:
                    chunks.append(
                        TextChunk(
                            content=section_text.strip(),
                            token_count=tokens,
                            metadata={"is_section": True, "section_index": idx},
                        )
                    )
                else:
                    chunks.extend(
                        chunk_text(
                            section_text,
                            max_tokens,
                            overlap_tokens,
                            preserve_sections=False,
                            preserve_paragraphs=preserve_paragraphs,
                        )
                    )
            return chunks

    if preserve_paragraphs:
        paragraphs = PARAGRAPH_BREAK.split(normalized)
        if len(paragraphs) > 1:
            current = ""
            current_tokens = 0
            for raw in paragraphs:
                paragraph = raw.strip()
                if not paragraph:
                    continue
                tokens = estimate_token_count(paragraph)

                if tokens > max_tokens:
                    if current:
                        chunks.append(TextChunk(current.strip(), current_tokens, {"contains_paragraphs": True}))
                        current, current_tokens = "", 0
                    chunks.extend(_sliding_chunks(paragraph, max_tokens, overlap_tokens))
                    continue

                if current_tokens + tokens > max_tokens:
                    chunks.append(TextChunk(current.strip(), current_tokens, {"contains_paragraphs": True}))
                    current, current_tokens = paragraph, tokens
                else:
                    current = f"{current}\n\n{paragraph}" if current else paragraph
                    current_tokens += tokens

            if current:
                chunks.append(TextChunk(current.strip(), current_tokens, {"contains_paragraphs": True}))
            return chunks

    return _sliding_chunks(normalized, max_tokens, overlap_tokens)


def _sliding_chunks(text: str, max_tokens: int, overlap_tokens: int) -> list[TextChunk]:
    text_length = len(text)
    chars_per_chunk = int(max_tokens * 4 * 0.9)
    overlap_chars = int(overlap_tokens * 4)

    if text_length <= chars_per_chunk:
        content = text.strip()
        if not content:
            return []
        return [TextChunk(content, estimate_token_count(text), {"method": "single"})]

    chunks: list[TextChunk] = []
    start = 0
    while start < text_length:
        end = min(start + chars_per_chunk, text_length)

        if end < text_length:
            window_start = max(0, end - 100)
            sentence = SENTENCE_END.search(text, window_start, end + 100)
            if sentence:
                boundary = sentence.start() + 1
                if start + chars_per_chunk / 2 < boundary < end + 100:
                    end = boundary + 1
            else:
                last_space = text.rfind(" ", 0, end + 1)
                if last_space > start + chars_per_chunk / 2:
                    end = last_space + 1

        content = text[start:end].strip()
        if content:
            chunks.append(
                TextChunk(
                    content,
                    estimate_token_count(content),
                    {"method": "sliding", "start_position": start, "end_position": end},
                )
            )

        start = max(end - overlap_chars, start + 1)

        if text_length - start < chars_per_chunk / 4:
            final = text[start:].strip()
            if final:
                chunks.append(
                    TextChunk(
                        final,
                        estimate_token_count(final),
                        {"method": "final", "start_position": start, "end_position": text_length},
                    )
                )
            break

    return chunks


# =============================================================================
# EXTRACTION
# =============================================================================

_WHITESPACE = re.compile(r"\s+")
_REMOVED_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside"]


def _clean_text(element: Tag | None) -> str:
    if element is None:
        return ""
    return _WHITESPACE.sub(" ", element.get_text()).strip()


def html_to_text(page: str, url: str = "") -> tuple[str, dict[str, Any]]:
    """Reduce an HTML page to markdown-ish text.

    Returns:
        Tuple of (text, metadata)
    """
    soup = BeautifulSoup(page, "lxml")

    title = _clean_text(soup.title) or "Unknown Title"
    description_tag = soup.find("meta", attrs={"name": "description"})
    description = (description_tag.get("content") or "").strip() if description_tag else ""
    canonical_tag = soup.find("link", rel="canonical")
    canonical_url = canonical_tag.get("href") if canonical_tag else url

    for element in soup(_REMOVED_TAGS):
        element.decompose()
    if soup.head:
        soup.head.decompose()

    main = soup.find("article") or soup.find("main") or soup.body or soup

    blocks: list[str] = []
    paragraphs = headings = 0
    for element in main.find_all(["h1", "h2", "h3", "h4", "h5", "h6", "p"]):
        inner = _clean_text(element)
        if not inner:
            continue
        if element.name == "p":
            blocks.append(inner)
            paragraphs += 1
        else:
            blocks.append(f"{'#' * int(element.name[1])} {inner}")
            headings += 1

    if not blocks:
        stripped = _clean_text(main)
        blocks = [stripped[i : i + 500].strip() for i in range(0, len(stripped), 500)]
        blocks = [b for b in blocks if b]
        paragraphs = len(blocks)

    parts = [f"# {title}"]
    if description:
        parts.append(description)
    parts.append(f"Source: {canonical_url or url}")
    parts.extend(blocks)
    text = "\n\n".join(parts) + "\n"

    metadata = {
        "title": title,
        "description": description,
        "canonical_url": canonical_url,
        "type": "webpage",
        "source_url": url,
        "content_length": len(text),
        "paragraphs_count": paragraphs,
        "headings_count": headings,
    }
    return text, metadata


def youtube_video_id(url: str) -> str | None:
    parsed = urlparse(url)
    if parsed.netloc.endswith("youtu.be"):
        return parsed.path.lstrip("/").split("/")[0] or None
    if "youtube.com" in parsed.netloc:
        if parsed.path == "/watch":
            return parse_qs(parsed.query).get("v", [None])[0]
        for prefix in ("/embed/", "/shorts/", "/v/"):
            if parsed.path.startswith(prefix):
                return parsed.path[len(prefix) :].split("/")[0] or None
    return None


def fetch_youtube(url: str, http: httpx.Client) -> tuple[str, dict[str, Any]]:
    """Describe a YouTube video from its oEmbed metadata."""
    video_id = youtube_video_id(url)
    if not video_id:
        raise DocumentProcessingError(f"Could not extract a video id from {url}")

    response = http.get(
        "https://www.youtube.com/oembed",
        params={"url": f"https://www.youtube.com/watch?v={video_id}", "format": "json"},
    )
    if response.status_code != 200:
        raise DocumentProcessingError(f"Failed to fetch video info: HTTP {response.status_code}")
    info = response.json()

    text = (
        f"# {info.get('title', 'Untitled video')}\n\n"
        f"Channel: {info.get('author_name', 'Unknown')}\n"
        f"Source: {url}\n\n"
        "Note: No transcript was available for this video. "
        "This content includes only basic metadata.\n"
    )
    metadata = {
        "type": "youtube_video",
        "video_id": video_id,
        "title": info.get("title"),
        "author": info.get("author_name"),
        "thumbnail_url": info.get("thumbnail_url"),
        "has_transcript": False,
    }
    return text, metadata


def fetch_web_page(url: str, http: httpx.Client) -> tuple[str, dict[str, Any]]:
    try:
        response = http.get(url)
    except httpx.HTTPError as e:
        raise DocumentProcessingError(f"Failed to process webpage: {e}") from e
    if response.status_code >= 400:
        raise DocumentProcessingError(
            f"Failed to fetch webpage: HTTP {response.status_code} {response.reason_phrase}"
        )
    return html_to_text(response.text, url)


def extract_pdf_text(data: bytes) -> tuple[str, dict[str, Any]]:
    """Extract the text of every page of a PDF."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pages = [page.get_text() for page in doc]
        info = {k: v for k, v in (doc.metadata or {}).items() if v}
        info["page_count"] = len(pages)
    finally:
        doc.close()
    return "\n\n".join(pages), info


def _is_text_like(file_type: str | None, storage_path: str) -> bool:
    if file_type and (file_type.startswith("text/") or file_type in TEXT_FILE_TYPES):
        return True
    return storage_path.lower().endswith(TEXT_EXTENSIONS)


# =============================================================================
# PROCESSORS
# =============================================================================


class DocumentProcessor:
    """Runs the extract → chunk → store pipeline for one function name."""

    def __init__(
        self,
        function_name: str,
        store: BucketStore | None = None,
        llm_factory: LLMFactory | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.function_name = function_name
        self._store = store
        self._llm_factory = llm_factory
        self._http = http_client

    @property
    def store(self) -> BucketStore:
        return self._store or get_bucket_store()

    def _http_client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                timeout=FETCH_TIMEOUT,
            )
        return self._http

    def _llm(self) -> Any:
        if self._llm_factory is not None:
            return self._llm_factory()
        from classroom.llm.client import LLMClient

        return LLMClient()

    def __call__(self, body: dict[str, Any]) -> dict[str, Any]:
        document_id = body.get("documentId")
        if not document_id:
            return {"success": False, "error": "Missing documentId in request body"}

        logger.info("document_processing_started", function=self.function_name, document_id=document_id)
        document = documents_repository.update_document_status(
            document_id,
            "processing",
            {
                "processing_attempted_at": datetime.now(timezone.utc).isoformat(),
                "processed_by_function": self.function_name,
            },
        )
        if document is None:
            return {"success": False, "error": f"Document not found: {document_id}"}

        try:
            text, extracted = self.extract(document)
            if not text.strip():
                raise DocumentProcessingError("No text was extracted from the document.")

            generation = load_app_config().generation
            chunks = chunk_text(
                text,
                max_tokens=generation.max_tokens_per_chunk,
                overlap_tokens=generation.overlap_tokens,
            )
            stored = documents_repository.replace_chunks(
                document_id, [(c.content, c.token_count) for c in chunks]
            )
        except Exception as e:
            logger.error(
                "document_processing_failed",
                function=self.function_name,
                document_id=document_id,
                error=str(e),
            )
            documents_repository.update_document_status(
                document_id, "error", {"processing_error": str(e)}
            )
            return {"success": False, "documentId": document_id, "error": str(e)}

        token_count = sum(c.token_count for c in chunks)
        documents_repository.update_document_status(
            document_id,
            "completed",
            {
                **extracted,
                "chunk_count": stored,
                "token_count": token_count,
                "text_content_length": len(text),
                "processed_date": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info(
            "document_processing_completed",
            function=self.function_name,
            document_id=document_id,
            chunks=stored,
            tokens=token_count,
        )
        return {"success": True, "documentId": document_id, "chunks_created": stored}

    def extract(self, document: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Extract (text, metadata) from a document row.

        Raises:
            DocumentProcessingError: If the source cannot be read
        """
        metadata = document.get("metadata") or {}
        file_type = document.get("file_type")

        original_url = metadata.get("originalUrl")
        if file_type == "application/json" and original_url:
            if re.search(r"youtube\.com|youtu\.be", original_url):
                return fetch_youtube(original_url, self._http_client())
            return fetch_web_page(original_url, self._http_client())

        storage_path = document.get("storage_path")
        if not storage_path:
            raise DocumentProcessingError("Document record is missing storage_path.")

        data = self.store.download(f"org-{document['organisation_id']}-uploads", storage_path)

        if self.function_name == "kb-process-textfile" or _is_text_like(file_type, storage_path):
            return data.decode("utf-8", errors="replace"), {}
        if file_type == "application/pdf" or storage_path.lower().endswith(".pdf"):
            return extract_pdf_text(data)
        if file_type and file_type.startswith("audio/"):
            transcript = self._llm().transcribe(data, file_name=storage_path.rsplit("/", 1)[-1])
            return transcript, {"type": "audio_transcript"}

        logger.warning("unsupported_file_type", file_type=file_type, path=storage_path)
        return "", {}


def register_processors(
    registry: FunctionRegistry,
    store: BucketStore | None = None,
    llm_factory: LLMFactory | None = None,
    http_client: httpx.Client | None = None,
) -> None:
    """Register ``process-document`` and ``kb-process-textfile``."""
    for name in ("process-document", "kb-process-textfile"):
        registry.register(
            name,
            DocumentProcessor(name, store=store, llm_factory=llm_factory, http_client=http_client),
        )
