"""Length-preserving rewrite of user text through a chat deployment.

Short texts go through a single request with one corrective expansion when the
answer comes back too short. Long texts are split into chunks which are
rewritten one after another so a single credential is never hit in parallel.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from api_handler import CompletionError, CompletionResult
from system_prompts import get_prompt_temperature, get_token_budget, render_prompt

from .text_splitter import TextChunk, iter_chunks

LOGGER = logging.getLogger(__name__)

SEVERE_WARNING = "Warning: the rewritten text is significantly shorter than the original text."
MILD_WARNING = "Note: the rewritten text is slightly shorter than the original text."
SINGLE_PASS_SEVERE_HINT = " The model may have condensed the content."
CHUNKED_SEVERE_HINT = " Chunked rewriting may affect the length."

CHUNK_JOINER = "\n\n"


class RewriteError(RuntimeError):
    """Raised when the rewrite request itself fails."""

    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


class RewriteValidationError(ValueError):
    """Raised when the submitted text cannot be rewritten."""


class CompletionClient(Protocol):
    def complete(self, messages: Sequence[Mapping[str, str]], **kwargs: Any) -> CompletionResult:
        ...


@dataclass(frozen=True)
class RewriteSettings:
    chunk_threshold: int = 20000
    chunk_size: int = 15000
    severe_ratio: float = 0.8
    mild_ratio: float = 0.9
    target_ratio: float = 0.95
    retry_below_ratio: float = 0.8
    retry_short_chunks: bool = True


@dataclass(frozen=True)
class RewriteResult:
    rewritten_text: str
    original_length: int
    new_length: int
    length_difference: int
    length_ratio: float
    warning: Optional[str] = None
    chunks_processed: Optional[int] = None
    usage: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "rewrittenText": self.rewritten_text,
            "originalLength": self.original_length,
            "newLength": self.new_length,
            "lengthDifference": self.length_difference,
            "lengthRatio": self.length_ratio,
            "warning": self.warning,
            "usage": self.usage,
        }
        if self.chunks_processed is not None:
            payload["chunksProcessed"] = self.chunks_processed
        return payload


def classify_length_ratio(
    ratio: float,
    *,
    severe_ratio: float = 0.8,
    mild_ratio: float = 0.9,
    severe_hint: str = "",
) -> Optional[str]:
    """Return the shortfall warning for ``ratio`` or ``None`` when it is acceptable."""

    if ratio < severe_ratio:
        return SEVERE_WARNING + severe_hint
    if ratio < mild_ratio:
        return MILD_WARNING
    return None


class TextRewriter:
    def __init__(
        self,
        *,
        chunk_generator: Optional[CompletionClient] = None,
        single_pass_generator: Optional[CompletionClient] = None,
        settings: Optional[RewriteSettings] = None,
    ) -> None:
        self.chunk_generator = chunk_generator
        self.single_pass_generator = single_pass_generator
        self.settings = settings or RewriteSettings()

    def needs_chunking(self, text: str) -> bool:
        return len(text) > self.settings.chunk_threshold

    def rewrite(self, text: str) -> RewriteResult:
        if not isinstance(text, str) or not text.strip():
            raise RewriteValidationError("Text is required")
        if self.needs_chunking(text):
            return self.rewrite_chunked(text)
        return self.rewrite_single_pass(text)

    # ---------------- chunked path ----------------
    def rewrite_chunked(self, text: str) -> RewriteResult:
        if self.chunk_generator is None:
            raise RewriteError("No chat deployment is configured for chunked rewriting.")

        original_length = len(text)
        chunks = list(iter_chunks(text, self.settings.chunk_size))
        total = len(chunks)
        LOGGER.info("Processing %d chunks for text of %d characters", total, original_length)

        rewritten: List[str] = []
        usages: List[Mapping[str, Any]] = []
        for chunk in chunks:
            LOGGER.info("Processing chunk %d/%d (%d characters)", chunk.index + 1, total, chunk.length)
            try:
                chunk_text, chunk_usages = self._rewrite_chunk(chunk, total)
            except Exception as exc:  # partial failure must not abort the document
                LOGGER.warning("Error processing chunk %d/%d: %s", chunk.index + 1, total, exc)
                chunk_text, chunk_usages = f"[Error processing chunk {chunk.index + 1}: {chunk.text}]", []
            else:
                LOGGER.info("Chunk %d/%d completed: %d characters", chunk.index + 1, total, len(chunk_text))
            rewritten.append(chunk_text)
            usages.extend(chunk_usages)

        new_length = sum(len(part) for part in rewritten)
        ratio = new_length / original_length
        usage = _sum_usage(usages)
        usage.update({"method": "chunked", "chunks": total})

        LOGGER.info("Chunked rewrite completed: %d chunks, %d characters total", total, new_length)
        return RewriteResult(
            rewritten_text=CHUNK_JOINER.join(rewritten),
            original_length=original_length,
            new_length=new_length,
            length_difference=new_length - original_length,
            length_ratio=ratio,
            warning=classify_length_ratio(
                ratio,
                severe_ratio=self.settings.severe_ratio,
                mild_ratio=self.settings.mild_ratio,
                severe_hint=CHUNKED_SEVERE_HINT,
            ),
            chunks_processed=total,
            usage=usage,
        )

    def _rewrite_chunk(self, chunk: TextChunk, total: int) -> tuple[str, List[Mapping[str, Any]]]:
        params = {
            "max_tokens": get_token_budget("rewrite_chunk", chunk.length),
            "temperature": get_prompt_temperature("rewrite_chunk"),
        }
        prompt = render_prompt(
            "rewrite_chunk",
            chunk_length=chunk.length,
            part=chunk.index + 1,
            total=total,
            text=chunk.text,
        )
        result = self.chunk_generator.complete([{"role": "user", "content": prompt}], **params)
        usages = [result.usage] if result.usage else []
        text = result.text.strip()

        if self.settings.retry_short_chunks and len(text) / chunk.length < self.settings.retry_below_ratio:
            LOGGER.info(
                "Chunk %d/%d too short (%d vs %d characters); requesting expansion",
                chunk.index + 1,
                total,
                len(text),
                chunk.length,
            )
            try:
                expanded = self._expand(self.chunk_generator, text, chunk.length, **params)
            except Exception as exc:  # keep the first rewrite
                LOGGER.warning("Expansion of chunk %d/%d failed: %s", chunk.index + 1, total, exc)
            else:
                text = expanded.text.strip()
                if expanded.usage:
                    usages.append(expanded.usage)
        return text, usages

    # ---------------- single-pass path ----------------
    def rewrite_single_pass(self, text: str) -> RewriteResult:
        if self.single_pass_generator is None:
            raise RewriteError("No rewrite deployment is configured.")

        original_length = len(text)
        params = {"max_completion_tokens": get_token_budget("rewrite_single", original_length)}
        prompt = render_prompt(
            "rewrite_single",
            original_length=original_length,
            minimum_length=self._minimum_length(original_length),
            text=text,
        )
        try:
            result = self.single_pass_generator.complete([{"role": "user", "content": prompt}], **params)
        except CompletionError as exc:
            raise RewriteError(str(exc), status_code=exc.status_code or 500) from exc

        rewritten_text = result.text
        ratio = len(rewritten_text) / original_length
        if ratio < self.settings.retry_below_ratio:
            LOGGER.info("Text too short (ratio %.2f), attempting one expansion retry", ratio)
            try:
                retry = self._expand(self.single_pass_generator, rewritten_text, original_length, **params)
            except Exception as exc:  # the first result is still usable
                LOGGER.warning("Expansion retry failed; keeping first rewrite. Error: %s", exc)
            else:
                rewritten_text = retry.text
                ratio = len(rewritten_text) / original_length

        new_length = len(rewritten_text)
        return RewriteResult(
            rewritten_text=rewritten_text,
            original_length=original_length,
            new_length=new_length,
            length_difference=new_length - original_length,
            length_ratio=ratio,
            warning=classify_length_ratio(
                ratio,
                severe_ratio=self.settings.severe_ratio,
                mild_ratio=self.settings.mild_ratio,
                severe_hint=SINGLE_PASS_SEVERE_HINT,
            ),
            usage=result.usage,
        )

    def _expand(
        self,
        generator: CompletionClient,
        short_text: str,
        original_length: int,
        **params: Any,
    ) -> CompletionResult:
        prompt = render_prompt(
            "rewrite_expand",
            current_length=len(short_text),
            original_length=original_length,
            minimum_length=self._minimum_length(original_length),
            text=short_text,
        )
        return generator.complete([{"role": "user", "content": prompt}], **params)

    def _minimum_length(self, original_length: int) -> int:
        return math.floor(original_length * self.settings.target_ratio)


def _sum_usage(usages: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    totals: Dict[str, Any] = {}
    for usage in usages:
        for key, value in usage.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                totals[key] = totals.get(key, 0) + value
    return totals
