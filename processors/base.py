"""
Abstract base class for file processors.

A processor is the queue's processing callback: it takes one file and turns it
into whatever downstream state the application needs (text chunks, embeddings).
The worker never looks inside; it picks one of two entry points by file size
and records the returned ProcessingResult on the job:

    file_size >  QUEUE_MAX_DIRECT_FILE_SIZE  → process_large_file()
    file_size <= QUEUE_MAX_DIRECT_FILE_SIZE  → process_file()

To add a new processor:
1. Create a class that inherits AbstractFileProcessor
2. Implement process_file(), process_large_file() and processor_name
3. Add it to processors/registry.py
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ProcessingResult:
    """Outcome reported by a processor. message is stored on the job either way."""
    success: bool
    message: str = ""

    @classmethod
    def ok(cls, message: str = "") -> "ProcessingResult":
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, message: str) -> "ProcessingResult":
        return cls(success=False, message=message)


class AbstractFileProcessor(ABC):

    @abstractmethod
    def process_file(self, reference_id: str, path: str) -> ProcessingResult:
        """
        Process a file small enough to load in one go.

        Returns:
            ProcessingResult; success=False is recorded as a failed attempt.

        Raises:
            Any exception → also recorded as a failed attempt by the worker.
        """
        ...

    @abstractmethod
    def process_large_file(self, reference_id: str, path: str) -> ProcessingResult:
        """Process a file above the direct-processing size, streaming it."""
        ...

    @property
    @abstractmethod
    def processor_name(self) -> str:
        """Unique identifier used by PROCESSOR_NAME (e.g., 'pdf_text')."""
        ...
