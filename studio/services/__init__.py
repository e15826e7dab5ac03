"""Service layer for the rewrite, image, video and chat workflows."""

from __future__ import annotations

from .batch_images import (  # noqa: F401
    BatchImagePipeline,
    BatchPromptItem,
    BatchResult,
    BatchSummary,
    BatchValidationError,
)
from .rewrite import RewriteError, RewriteResult, RewriteSettings, TextRewriter  # noqa: F401
from .text_splitter import TextChunk, iter_chunks, split_text  # noqa: F401

__all__ = [
    "BatchImagePipeline",
    "BatchPromptItem",
    "BatchResult",
    "BatchSummary",
    "BatchValidationError",
    "RewriteError",
    "RewriteResult",
    "RewriteSettings",
    "TextChunk",
    "TextRewriter",
    "iter_chunks",
    "split_text",
]
