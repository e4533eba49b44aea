# jojo/fallback.py
"""Try candidate models in priority order until one produces a reply."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from .errors import RateLimitError, UpstreamExhaustedError

logger = logging.getLogger(__name__)

RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"
AUTH = "auth"
OTHER = "other"

_RATE_LIMIT_MARKERS = ("quota", "resource exhausted", "resource_exhausted", "too many requests")
_UNAVAILABLE_MARKERS = ("not found", "not_found", "is not supported", "unavailable")
_AUTH_MARKERS = ("api key not valid", "invalid api key", "permission denied")


@dataclass
class GenerationOptions:
    max_output_tokens: Optional[int] = 1024
    temperature: Optional[float] = 0.7


@dataclass
class AttemptFailure:
    model: str
    kind: str
    message: str


@dataclass
class GenerationResult:
    text: str
    model: str
    failures: List[AttemptFailure] = field(default_factory=list)


@dataclass
class StreamHandle:
    """A stream whose first fragment has already arrived from `model`."""

    model: str
    first_chunk: str
    rest: AsyncIterator[str]
    failures: List[AttemptFailure] = field(default_factory=list)

    async def chunks(self) -> AsyncIterator[str]:
        yield self.first_chunk
        async for text in self.rest:
            yield text

    async def aclose(self) -> None:
        """Release the provider stream, even if it was not read to the end."""
        aclose = getattr(self.rest, "aclose", None)
        if aclose is not None:
            await aclose()


class EmptyReplyError(Exception):
    pass


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    match = re.search(r"\b(4\d\d|5\d\d)\b", str(exc))
    return int(match.group(1)) if match else None


def classify_failure(exc: BaseException) -> str:
    code = _status_code(exc)
    text = str(exc).lower()
    if code == 429 or "429" in text or any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return RATE_LIMITED
    if code == 404 or any(marker in text for marker in _UNAVAILABLE_MARKERS):
        return UNAVAILABLE
    if code in (401, 403) or any(marker in text for marker in _AUTH_MARKERS):
        return AUTH
    return OTHER


def build_messages(
    system_instruction: Optional[str],
    context: Sequence[Dict[str, Any]],
    parts: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    messages.extend({"role": entry["role"], "content": entry["content"]} for entry in context)
    messages.append({"role": "user", "content": parts})
    return messages


class ModelFallbackExecutor:
    """Runs one generation request against `candidates`, first success wins.

    Rate-limit, unavailable-model and unclassified failures move on to the
    next candidate. Authentication failures stop the loop, since every
    candidate shares the same key, unless `retry_any_error` is set.
    """

    def __init__(self, provider, candidates: Sequence[str], retry_any_error: bool = False):
        if not candidates:
            raise ValueError("at least one candidate model is required")
        self.provider = provider
        self.candidates = list(candidates)
        self.retry_any_error = retry_any_error

    def _record(self, failures: List[AttemptFailure], model: str, exc: BaseException) -> AttemptFailure:
        failure = AttemptFailure(model=model, kind=classify_failure(exc), message=str(exc))
        failures.append(failure)
        logger.warning("Model %s failed (%s): %s", model, failure.kind, failure.message[:200])
        return failure

    def _should_stop(self, failure: AttemptFailure) -> bool:
        return failure.kind == AUTH and not self.retry_any_error

    def _exhausted(self, failures: List[AttemptFailure], cause: Optional[BaseException]):
        last = failures[-1]
        logger.error("All candidate models failed; last was %s (%s)", last.model, last.kind)
        if last.kind == RATE_LIMITED:
            return RateLimitError("Too many requests. Please wait a moment.", failures, cause)
        return UpstreamExhaustedError(f"AI Error: {last.message}", failures, cause)

    async def generate(
        self,
        context: Sequence[Dict[str, Any]],
        parts: List[Dict[str, Any]],
        system_instruction: Optional[str],
        options: GenerationOptions,
    ) -> GenerationResult:
        messages = build_messages(system_instruction, context, parts)
        failures: List[AttemptFailure] = []
        cause: Optional[BaseException] = None
        for model in self.candidates:
            try:
                text = await self.provider.complete(
                    model=model,
                    messages=messages,
                    max_output_tokens=options.max_output_tokens,
                    temperature=options.temperature,
                )
                if not text:
                    raise EmptyReplyError("No text returned by model")
            except Exception as exc:
                cause = exc
                if self._should_stop(self._record(failures, model, exc)):
                    break
                continue
            return GenerationResult(text=text, model=model, failures=failures)
        raise self._exhausted(failures, cause)

    async def open_stream(
        self,
        context: Sequence[Dict[str, Any]],
        parts: List[Dict[str, Any]],
        system_instruction: Optional[str],
        options: GenerationOptions,
    ) -> StreamHandle:
        """Fail over until a candidate delivers its first fragment.

        Anything raised after that point comes out of `StreamHandle.rest` and
        is never retried against another candidate.
        """
        messages = build_messages(system_instruction, context, parts)
        failures: List[AttemptFailure] = []
        cause: Optional[BaseException] = None
        for model in self.candidates:
            stream = self.provider.stream(
                model=model,
                messages=messages,
                max_output_tokens=options.max_output_tokens,
                temperature=options.temperature,
            )
            try:
                first = await stream.__anext__()
            except StopAsyncIteration:
                cause = EmptyReplyError("No text returned by model")
                self._record(failures, model, cause)
                continue
            except Exception as exc:
                cause = exc
                if self._should_stop(self._record(failures, model, exc)):
                    break
                continue
            return StreamHandle(model=model, first_chunk=first, rest=stream, failures=failures)
        raise self._exhausted(failures, cause)
