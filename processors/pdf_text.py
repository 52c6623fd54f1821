"""
Text extraction processor: the default processing callback.

Turns a PDF (detected by its magic bytes) or a plain-text file into
fixed-size text chunks and hands each chunk to a sink. The sink is where an
embeddings generator plugs in; without one, chunks are only logged.

    processor = PdfTextProcessor(chunk_sink=lambda ref, index, text: embed(ref, index, text))

Two paths, chosen by the worker from the file size:
- process_file: reads the whole file into memory, extracts, chunks
- process_large_file: streams page by page (PDF) or block by block (text),
  so memory stays flat, and checks the processing time budget between
  segments. Running past the budget raises ProcessingTimeoutError, which the
  worker records as a failed attempt.
"""

import io
import logging
import time
from typing import Callable, Iterator, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from config.settings import settings
from models.errors import ProcessingTimeoutError
from processors.base import AbstractFileProcessor, ProcessingResult

logger = logging.getLogger(__name__)

PDF_MAGIC_BYTES = b"%PDF-"

ChunkSink = Callable[[str, int, str], None]


def _log_chunk(reference_id: str, index: int, text: str) -> None:
    logger.debug(f"Chunk {index} of {reference_id}: {len(text)} chars")


def split_text(text: str, chunk_size: int, strip: bool = True) -> list[str]:
    """Split text into consecutive slices of at most chunk_size characters."""
    if strip:
        text = text.strip()
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


class PdfTextProcessor(AbstractFileProcessor):

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_sink: Optional[ChunkSink] = None,
        time_budget: Optional[float] = None,
    ):
        self._chunk_size = chunk_size or settings.PROCESSOR_CHUNK_SIZE
        self._sink = chunk_sink or _log_chunk
        self._time_budget = (
            time_budget if time_budget is not None else settings.QUEUE_MAX_PROCESSING_TIME
        )

    def process_file(self, reference_id: str, path: str) -> ProcessingResult:
        try:
            with open(path, "rb") as f:
                content = f.read()
            text = self._decode(content)
        except (OSError, PdfReadError) as e:
            return ProcessingResult.failed(f"Failed to read {path}: {e}")

        chunks = split_text(text, self._chunk_size)
        if not chunks:
            return ProcessingResult.failed("No text content found")

        for index, chunk in enumerate(chunks):
            self._sink(reference_id, index, chunk)

        logger.info(f"Processed {reference_id}: {len(chunks)} chunks")
        return ProcessingResult.ok(f"Processed {len(chunks)} chunks")

    def process_large_file(self, reference_id: str, path: str) -> ProcessingResult:
        deadline = time.monotonic() + self._time_budget
        emitted = 0
        try:
            is_pdf = _is_pdf(path)
            segments = self._iter_pdf_pages(path) if is_pdf else self._iter_text_blocks(path)
            for segment in segments:
                if time.monotonic() > deadline:
                    raise ProcessingTimeoutError(
                        f"Processing {reference_id} exceeded {self._time_budget}s "
                        f"after {emitted} chunks"
                    )
                # text blocks arrive trimmed per document, pages are trimmed one by one
                for chunk in split_text(segment, self._chunk_size, strip=is_pdf):
                    self._sink(reference_id, emitted, chunk)
                    emitted += 1
        except (OSError, PdfReadError) as e:
            return ProcessingResult.failed(f"Failed to read {path}: {e}")

        if emitted == 0:
            return ProcessingResult.failed("No text content found")

        logger.info(f"Processed {reference_id} in streaming mode: {emitted} chunks")
        return ProcessingResult.ok(f"Processed {emitted} chunks in streaming mode")

    @property
    def processor_name(self) -> str:
        return "pdf_text"

    def _decode(self, content: bytes) -> str:
        if content.startswith(PDF_MAGIC_BYTES):
            reader = PdfReader(io.BytesIO(content))
            return "\n\n".join(page.extract_text() or "" for page in reader.pages)
        return content.decode("utf-8", errors="replace")

    def _iter_pdf_pages(self, path: str) -> Iterator[str]:
        reader = PdfReader(path)
        for page in reader.pages:
            yield page.extract_text() or ""

    def _iter_text_blocks(self, path: str) -> Iterator[str]:
        """
        Read the file block by block with leading and trailing whitespace of
        the whole document dropped. A block's trailing whitespace is held back
        and prefixed to the next block that has content, so words on either
        side of a block boundary stay separated.
        """
        held = ""
        started = False
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            while block := f.read(self._chunk_size):
                if not started:
                    block = block.lstrip()
                    if not block:
                        continue
                    started = True
                body = block.rstrip()
                if not body:
                    held += block
                    continue
                yield held + body
                held = block[len(body):]


def _is_pdf(path: str) -> bool:
    with open(path, "rb") as f:
        return f.read(len(PDF_MAGIC_BYTES)) == PDF_MAGIC_BYTES
