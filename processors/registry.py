"""
Processor registry: maps PROCESSOR_NAME strings to processor classes.

The worker is built with one processor instance; this is the one place that
knows which names exist. Applications with their own processor (e.g. one that
posts chunks to an embeddings API) call register_processor() at startup.
"""

from typing import Any

from processors.base import AbstractFileProcessor
from processors.pdf_text import PdfTextProcessor

_REGISTRY: dict[str, type[AbstractFileProcessor]] = {
    "pdf_text": PdfTextProcessor,
}


def register_processor(name: str, processor_cls: type[AbstractFileProcessor]) -> None:
    _REGISTRY[name] = processor_cls


def get_processor(name: str, **kwargs: Any) -> AbstractFileProcessor:
    """Instantiate a processor by name. Raises ValueError if unknown."""
    processor_cls = _REGISTRY.get(name)
    if processor_cls is None:
        raise ValueError(
            f"Unknown processor: '{name}'. Available: {list(_REGISTRY.keys())}"
        )
    return processor_cls(**kwargs)
