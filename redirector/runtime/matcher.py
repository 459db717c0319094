from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Optional
from urllib.parse import SplitResult, urlsplit

from ..errors import ValidatorError
from .contracts import CallbackValidator, Operation

logger = logging.getLogger(__name__)


def parse_candidate(candidate: Any) -> Optional[SplitResult]:
    """Parse a candidate callback URI, or return ``None`` when it is unusable."""
    if not isinstance(candidate, str):
        return None
    value = candidate.strip()
    if not value:
        return None
    try:
        parsed = urlsplit(value)
        # Accessing the port validates it.
        parsed.port
    except ValueError:
        return None
    if not parsed.scheme and not parsed.path.startswith("/"):
        return None
    return parsed


class CallbackMatcher:
    """Decide whether a candidate callback belongs to an operation.

    ``False`` is a soft reject: the channel keeps listening. Only a validator
    that raises surfaces as :class:`ValidatorError`.
    """

    def match(self, candidate: Any, operation: Operation) -> bool:
        if parse_candidate(candidate) is None:
            logger.debug("Operation %s: ignoring malformed candidate %r", operation.id, candidate)
            return False
        validator = operation.validator
        if validator is None:
            return True
        verdict = self._call(validator, candidate, operation)
        if inspect.isawaitable(verdict):
            verdict = self._drive(verdict, operation)
        return self._settle(verdict, candidate, operation)

    async def match_async(self, candidate: Any, operation: Operation) -> bool:
        if parse_candidate(candidate) is None:
            logger.debug("Operation %s: ignoring malformed candidate %r", operation.id, candidate)
            return False
        validator = operation.validator
        if validator is None:
            return True
        verdict = self._call(validator, candidate, operation)
        if inspect.isawaitable(verdict):
            try:
                verdict = await verdict
            except Exception as exc:
                raise self._wrap(exc, operation) from exc
        return self._settle(verdict, candidate, operation)

    def needs_loop(self, operation: Operation) -> bool:
        """Whether the validator is a coroutine function that must run on ``operation.loop``."""
        validator = operation.validator
        return validator is not None and inspect.iscoroutinefunction(validator)

    @staticmethod
    def _call(validator: CallbackValidator, candidate: str, operation: Operation) -> Any:
        try:
            return validator(candidate)
        except Exception as exc:
            raise CallbackMatcher._wrap(exc, operation) from exc

    @staticmethod
    def _drive(awaitable: Any, operation: Operation) -> Any:
        loop = operation.loop
        try:
            if loop is not None and loop.is_running() and not loop.is_closed():
                try:
                    running = asyncio.get_running_loop()
                except RuntimeError:
                    running = None
                if running is loop:
                    if inspect.iscoroutine(awaitable):
                        awaitable.close()
                    raise RuntimeError("Async validators cannot be awaited synchronously on their own loop")
                return asyncio.run_coroutine_threadsafe(_as_coroutine(awaitable), loop).result()
            return asyncio.run(_as_coroutine(awaitable))
        except Exception as exc:
            raise CallbackMatcher._wrap(exc, operation) from exc

    @staticmethod
    def _settle(verdict: Any, candidate: str, operation: Operation) -> bool:
        if verdict:
            return True
        logger.debug("Operation %s: validator rejected %s", operation.id, candidate)
        return False

    @staticmethod
    def _wrap(exc: Exception, operation: Operation) -> ValidatorError:
        if isinstance(exc, ValidatorError):
            return exc
        return ValidatorError(
            f"Callback validator raised {type(exc).__name__}: {exc}",
            operation_id=operation.id,
        )


async def _as_coroutine(awaitable: Any) -> Any:
    return await awaitable
