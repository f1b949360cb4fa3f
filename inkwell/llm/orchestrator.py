"""
Request/stream orchestrator -- executes one generation call.

The orchestrator:

  1. Resolves the provider and model (``ConfigurationError`` before any
     network traffic and before anything is logged).
  2. Applies the reasoning policy (suffix stripping, effort or budget).
  3. Opens a request-log entry and issues the HTTP call.
  4. Races every suspension point (request, each chunk read) against the
     caller's :class:`CancelToken` and a client-side watchdog.
  5. Closes the log entry exactly once: success, error or aborted.

httpx failures are converted into :class:`TransportError` /
:class:`GenerationTimeoutError` carrying a user-displayable message.
Cancellation is never an error for the caller: ``execute`` raises
:class:`GenerationCancelled` (which the coordinator swallows) and
``execute_streaming`` simply ends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from inkwell.config import PROVIDER_DISPLAY_NAMES
from inkwell.llm.cancel import CancelToken
from inkwell.llm.errors import (
    ErrorCategory,
    GenerationCancelled,
    GenerationError,
    GenerationTimeoutError,
    TransportError,
    classify_status,
    user_message,
)
from inkwell.llm.providers import CallPlan, Provider, build_provider
from inkwell.llm.reasoning import classify
from inkwell.llm.registry import ProviderRegistry
from inkwell.llm.request_log import AIRequestLogger, RequestLogger
from inkwell.llm.types import Completion, GenerationRequest

logger = logging.getLogger(__name__)

ClientFactory = Callable[[float], httpx.AsyncClient]


def _default_client_factory(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


class _CallLog:
    """Guarantees exactly one terminal log event per logged request."""

    def __init__(self, request_logger: RequestLogger, log_id: str) -> None:
        self._logger = request_logger
        self.log_id = log_id
        self._started = time.monotonic()
        self.finished = False

    def _duration_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def success(self, text: str) -> None:
        if not self.finished:
            self.finished = True
            self._logger.log_success(self.log_id, text, self._duration_ms())

    def error(self, message: str) -> None:
        if not self.finished:
            self.finished = True
            self._logger.log_error(self.log_id, message, self._duration_ms())

    def aborted(self) -> None:
        if not self.finished:
            self.finished = True
            self._logger.log_aborted(self.log_id, self._duration_ms())


class RequestOrchestrator:
    """
    Executes generation requests against the configured providers.

    Parameters
    ----------
    registry:
        Resolves model references against the current configuration.
    request_logger:
        Receives one ``log_request`` and exactly one terminal event per call.
    client_factory:
        Builds the ``httpx.AsyncClient`` for a call, given the watchdog
        timeout.  Tests inject clients backed by ``httpx.MockTransport``.
    timeout:
        Watchdog override in seconds; defaults to
        ``generation.timeout_seconds`` from the configuration.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        request_logger: RequestLogger | None = None,
        client_factory: ClientFactory | None = None,
        timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._request_logger: RequestLogger = request_logger or AIRequestLogger()
        self._client_factory = client_factory or _default_client_factory
        self._timeout = timeout
        self._inflight: dict[str, CancelToken] = {}

    @property
    def request_logger(self) -> RequestLogger:
        return self._request_logger

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, request: GenerationRequest) -> CallPlan:
        """Resolve provider, model and reasoning mode for *request*."""
        resolution = self._registry.resolve(request.model, request.requested_provider)
        decision = classify(resolution.model_id, request.max_output_tokens)
        return CallPlan(request=request, resolution=resolution, reasoning=decision)

    def _watchdog_timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return self._registry.config.generation.timeout_seconds

    def _begin(self, plan: CallPlan) -> _CallLog:
        request = plan.request
        model = plan.model_id + (" (Reasoning)" if plan.reasoning.is_reasoning else "")
        meta: dict[str, Any] = {
            "entity_id": request.entity_id,
            "provider": plan.resolution.provider,
            "model": model,
            "max_tokens": plan.max_tokens,
            "word_count": request.word_count or int(request.max_output_tokens / 1.3),
            "prompt": request.prompt_for_logging(),
        }
        log_id = self._request_logger.log_request(meta)
        self._inflight[request.entity_id] = request.cancel_token
        return _CallLog(self._request_logger, log_id)

    def _release(self, request: GenerationRequest) -> None:
        if self._inflight.get(request.entity_id) is request.cancel_token:
            del self._inflight[request.entity_id]

    def _provider(self, plan: CallPlan, client: httpx.AsyncClient) -> Provider:
        return build_provider(
            plan.resolution.kind,
            plan.config,
            client,
            self._registry.config.generation,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, entity_id: str) -> bool:
        """Signal cancellation for the call running under *entity_id*."""
        token = self._inflight.get(entity_id)
        if token is None:
            return False
        token.cancel()
        return True

    def is_inflight(self, entity_id: str) -> bool:
        return entity_id in self._inflight

    async def _guard(
        self,
        awaitable: Awaitable[Any],
        token: CancelToken,
        deadline: float,
        timeout: float,
    ) -> Any:
        """
        Await *awaitable* unless the token fires or the deadline passes first.

        Raises ``GenerationCancelled`` or ``GenerationTimeoutError``;
        exceptions of *awaitable* (including ``StopAsyncIteration``)
        propagate unchanged.
        """
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        if token.cancelled:
            await self._discard(task)
            raise GenerationCancelled()

        remaining = deadline - loop.time()
        if remaining <= 0:
            await self._discard(task)
            raise GenerationTimeoutError(timeout)

        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {task, waiter},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()

        if token.cancelled:
            await self._discard(task)
            raise GenerationCancelled()
        if not task.done():
            await self._discard(task)
            raise GenerationTimeoutError(timeout)
        return task.result()

    @staticmethod
    async def _discard(task: asyncio.Future) -> None:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Error conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _status_detail(response: httpx.Response) -> str:
        try:
            data = response.json()
        except (ValueError, httpx.ResponseNotRead):
            try:
                return response.text[:500]
            except httpx.ResponseNotRead:
                return ""
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if data.get("message"):
                return str(data["message"])
        if isinstance(data, list) and data and isinstance(data[0], dict):
            error = data[0].get("error") or {}
            if error.get("message"):
                return str(error["message"])
        return str(data)[:500]

    def _convert(
        self, exc: Exception, plan: CallPlan, timeout: float
    ) -> tuple[GenerationError, str]:
        """Return the caller-facing error and the message to log."""
        provider = PROVIDER_DISPLAY_NAMES[plan.resolution.kind]
        if isinstance(exc, GenerationError):
            return exc, exc.message
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            category = classify_status(status)
            detail = self._status_detail(exc.response)
            error = TransportError(
                user_message(category, provider, status),
                category=category,
                status_code=status,
                detail=detail,
            )
            return error, f"HTTP {status}: {detail or error.message}"
        if isinstance(exc, httpx.TimeoutException):
            return GenerationTimeoutError(timeout), f"HTTP timeout: {exc}"
        if isinstance(exc, httpx.HTTPError):
            error = TransportError(
                user_message(ErrorCategory.NETWORK, provider),
                category=ErrorCategory.NETWORK,
            )
            return error, f"{type(exc).__name__}: {exc}"
        if isinstance(exc, ValueError):
            error = TransportError(
                f"Unexpected response from {provider}.",
                category=ErrorCategory.BACKEND_UNAVAILABLE,
            )
            return error, f"Malformed response: {exc}"
        raise exc

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def execute(self, request: GenerationRequest) -> Completion:
        """
        Run *request* to completion and return the final text.

        Raises ``ConfigurationError`` (nothing sent, nothing logged),
        ``TransportError``, ``GenerationTimeoutError`` or
        ``GenerationCancelled``.
        """
        plan = self.plan(request)
        token = request.cancel_token
        if token.cancelled:
            raise GenerationCancelled()

        timeout = self._watchdog_timeout()
        deadline = asyncio.get_running_loop().time() + timeout
        call = self._begin(plan)
        try:
            async with self._client_factory(timeout) as client:
                provider = self._provider(plan, client)
                completion = await self._guard(
                    provider.complete(plan), token, deadline, timeout
                )
        except GenerationCancelled:
            call.aborted()
            raise
        except Exception as exc:
            error, log_message = self._convert(exc, plan, timeout)
            call.error(log_message)
            if error is exc:
                raise
            raise error from exc
        else:
            call.success(completion.text)
            completion.provider = plan.resolution.provider
            completion.model = plan.model_id
            return completion
        finally:
            call.aborted()
            self._release(request)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def execute_streaming(
        self, request: GenerationRequest
    ) -> AsyncIterator[str]:
        """
        Yield visible text increments in network order.

        Reasoning chunks are dropped.  The sequence ends without further
        items once the request's token is cancelled; errors are raised as
        ``TransportError`` / ``GenerationTimeoutError``.
        """
        plan = self.plan(request)
        token = request.cancel_token
        if token.cancelled:
            return

        timeout = self._watchdog_timeout()
        deadline = asyncio.get_running_loop().time() + timeout
        call = self._begin(plan)
        accumulated: list[str] = []
        try:
            async with self._client_factory(timeout) as client:
                chunks = self._provider(plan, client).stream(plan)
                try:
                    while True:
                        try:
                            chunk = await self._guard(
                                chunks.__anext__(), token, deadline, timeout
                            )
                        except StopAsyncIteration:
                            break
                        if chunk.is_reasoning or not chunk.text:
                            continue
                        accumulated.append(chunk.text)
                        yield chunk.text
                finally:
                    await chunks.aclose()
        except GenerationCancelled:
            call.aborted()
            return
        except Exception as exc:
            error, log_message = self._convert(exc, plan, timeout)
            call.error(log_message)
            if error is exc:
                raise
            raise error from exc
        else:
            call.success("".join(accumulated))
        finally:
            # Reached without a terminal event when the consumer stops
            # iterating early.
            call.aborted()
            self._release(request)
