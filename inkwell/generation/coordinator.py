"""
Generation coordinator -- one logical generation per entity id.

The coordinator:
1. Registers a :class:`GenerationRecord` for the entity (rejecting or
   replacing a running one, depending on the conflict policy)
2. Hands the request to the :class:`RequestOrchestrator`
3. Runs post-processing hooks on success only
4. Converts the outcome into a :class:`GenerationResult` (or, when
   streaming, ends the sequence / raises a user-displayable error)
5. Removes the record

Records move ``GENERATING -> COMPLETED | FAILED | CANCELLED`` and are dropped
as soon as they reach a terminal state, so ``state()`` reports ``IDLE`` for
any entity without a running generation.
"""

from __future__ import annotations

import enum
import logging
import threading
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from inkwell.llm.cancel import CancelToken
from inkwell.llm.errors import (
    GenerationBusyError,
    GenerationCancelled,
    GenerationError,
)
from inkwell.llm.orchestrator import RequestOrchestrator
from inkwell.llm.types import GenerationRequest
from inkwell.types import GenerationResult

logger = logging.getLogger(__name__)

TRUNCATION_NOTE = " [Text was truncated due to token limit]"

PostProcess = Callable[[str], str]


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConflictPolicy:
    """What to do when an entity already has a running generation."""

    REJECT = "reject"
    REPLACE = "replace"


@dataclass
class GenerationRecord:
    entity_id: str
    cancel_token: CancelToken
    state: GenerationState = GenerationState.GENERATING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class GenerationCoordinator:
    """
    Tracks in-flight generations and enforces at-most-one per entity id.

    Parameters
    ----------
    orchestrator : RequestOrchestrator
        Executes the actual calls.
    on_conflict : str
        Default :class:`ConflictPolicy` for a start while one is running.
    """

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        on_conflict: str = ConflictPolicy.REJECT,
    ) -> None:
        self._orchestrator = orchestrator
        self._on_conflict = on_conflict
        self._records: dict[str, GenerationRecord] = {}
        # Guards the check-then-insert on _records; never held across an await.
        self._lock = threading.Lock()
        self._closed = False

    @property
    def orchestrator(self) -> RequestOrchestrator:
        return self._orchestrator

    # ------------------------------------------------------------------
    # Record bookkeeping
    # ------------------------------------------------------------------

    def _start(self, request: GenerationRequest, on_conflict: str | None) -> GenerationRecord:
        policy = on_conflict or self._on_conflict
        entity_id = request.entity_id
        with self._lock:
            if self._closed:
                raise RuntimeError("GenerationCoordinator is closed")
            existing = self._records.get(entity_id)
            if existing is not None:
                if policy != ConflictPolicy.REPLACE:
                    raise GenerationBusyError(entity_id)
                logger.info("Replacing running generation for %s", entity_id)
                existing.state = GenerationState.CANCELLED
                existing.cancel_token.cancel("replaced")
            record = GenerationRecord(entity_id=entity_id, cancel_token=request.cancel_token)
            self._records[entity_id] = record
        return record

    def _finish(self, record: GenerationRecord, state: GenerationState) -> None:
        with self._lock:
            if record.state is GenerationState.GENERATING:
                record.state = state
            if self._records.get(record.entity_id) is record:
                del self._records[record.entity_id]
        logger.debug("Generation for %s finished: %s", record.entity_id, record.state.value)

    # ------------------------------------------------------------------
    # Queries and cancellation
    # ------------------------------------------------------------------

    def is_active(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._records

    def state(self, entity_id: str) -> GenerationState:
        with self._lock:
            record = self._records.get(entity_id)
            return record.state if record is not None else GenerationState.IDLE

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def cancel(self, entity_id: str) -> bool:
        """
        Cancel the running generation for *entity_id*.

        Returns ``False`` (and changes nothing) when there is none.  The
        record is released immediately; the network call unwinds on its own.
        """
        with self._lock:
            record = self._records.pop(entity_id, None)
            if record is None:
                return False
            record.state = GenerationState.CANCELLED
        record.cancel_token.cancel()
        logger.info("Cancelled generation for %s", entity_id)
        return True

    def close(self) -> None:
        """Cancel every outstanding generation and refuse new ones."""
        with self._lock:
            self._closed = True
            records = list(self._records.values())
            self._records.clear()
            for record in records:
                record.state = GenerationState.CANCELLED
        for record in records:
            record.cancel_token.cancel("closed")
        if records:
            logger.info("Closed coordinator, cancelled %d generation(s)", len(records))

    async def __aenter__(self) -> GenerationCoordinator:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        post_process: PostProcess | None = None,
        on_conflict: str | None = None,
    ) -> GenerationResult:
        """
        Run a non-streaming generation.

        Never raises for call failures: the result carries either the text,
        a user-displayable error, or ``cancelled=True``.
        """
        try:
            record = self._start(request, on_conflict)
        except GenerationBusyError as exc:
            return GenerationResult(
                success=False, error=exc.message, error_category=exc.category
            )

        token = record.cancel_token
        try:
            completion = await self._orchestrator.execute(request)
        except GenerationCancelled:
            self._finish(record, GenerationState.CANCELLED)
            return GenerationResult(success=False, cancelled=True)
        except GenerationError as exc:
            if token.cancelled:
                self._finish(record, GenerationState.CANCELLED)
                return GenerationResult(success=False, cancelled=True)
            self._finish(record, GenerationState.FAILED)
            return GenerationResult(
                success=False, error=exc.message, error_category=exc.category
            )

        if token.cancelled:
            self._finish(record, GenerationState.CANCELLED)
            return GenerationResult(success=False, cancelled=True)

        text = completion.text.strip()
        if completion.truncated:
            text += TRUNCATION_NOTE
        if post_process is not None:
            text = post_process(text)
        self._finish(record, GenerationState.COMPLETED)
        return GenerationResult(
            success=True,
            text=text,
            provider=completion.provider,
            model=completion.model,
        )

    async def stream(
        self,
        request: GenerationRequest,
        on_conflict: str | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream visible text for *request*.

        Raises ``GenerationBusyError`` (reject policy) before anything is
        sent, and ``GenerationError`` subclasses with a user-displayable
        message on failure.  Cancellation ends the sequence silently.
        """
        record = self._start(request, on_conflict)
        token = record.cancel_token
        # Until the sequence ends normally or fails, an exit (consumer
        # stopped iterating, cancel) counts as cancelled.
        state = GenerationState.CANCELLED
        try:
            async with aclosing(self._orchestrator.execute_streaming(request)) as chunks:
                async for text in chunks:
                    if token.cancelled:
                        break
                    yield text
            if not token.cancelled:
                state = GenerationState.COMPLETED
        except GenerationError:
            state = GenerationState.FAILED
            raise
        finally:
            self._finish(record, state)
