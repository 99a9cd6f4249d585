"""Chat turn orchestration: retrieval, prompt assembly, and streamed generation.

A turn moves through ``Idle -> Retrieving -> ContextBuilt -> Generating -> Done | Failed``.
ChatOrchestrator.stream returns an EnvelopeStream: a background task runs the turn and
pushes envelopes into a bounded queue that the transport drains. The stream guarantees:

- exactly one ``metadata`` envelope, before any ``text`` envelope;
- ``text`` envelopes in generation order;
- exactly one terminal envelope (``done`` or ``error``), after which nothing is emitted.

Retrieval failures produce a lone ``error`` envelope (no metadata, no generation call).
Generation failures after metadata still end with an ``error`` envelope. A per-turn
Deadline bounds every suspension point (embedding, store query, each generation chunk);
expiry becomes a ``timeout`` error. EnvelopeStream.cancel abandons the turn, discards
anything queued and closes the stream with a ``cancelled`` error.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from reviewrag.config import Settings
from reviewrag.errors import ReviewRagError, StreamAbortedError, TurnCancelledError, TurnTimeoutError
from reviewrag.generation import (
    ChatMessage,
    GenerationRegistry,
    GenerationRequest,
    ResolvedModel,
    resolve_model,
)
from reviewrag.insights import ReviewThemes, SentimentBreakdown, analyze_sentiment, extract_themes
from reviewrag.log import get_logger
from reviewrag.obs import span
from reviewrag.prompts import RenderedPrompt, build_prompt, summarize_context
from reviewrag.remote_config import RemoteConfig
from reviewrag.retrieval import ContextBudget, ContextBudgetAssembler, RetrievalContext
from reviewrag.schemas import (
    ChatCompletionResponse,
    ChatMetadata,
    ChatRequest,
    DoneEnvelope,
    ErrorEnvelope,
    HistoryMessage,
    MetadataEnvelope,
    ReviewSummary,
    TextEnvelope,
    StreamEnvelope,
    is_terminal,
)
from reviewrag.store import SearchFilters

logger = get_logger(__name__)

T = TypeVar("T")
_EXHAUSTED = object()
_CANCEL = object()


class TurnState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    CONTEXT_BUILT = "context_built"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


class Deadline:
    """Wall-clock budget shared by every await of one turn."""

    def __init__(self, seconds: Optional[float]) -> None:
        self.seconds = seconds
        self._expires_at: Optional[float] = None
        if seconds is not None:
            self._expires_at = asyncio.get_running_loop().time() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - asyncio.get_running_loop().time())

    async def run(self, awaitable: Awaitable[T], stage: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.remaining())
        except asyncio.TimeoutError:
            raise TurnTimeoutError(stage) from None

    async def iterate(self, source: AsyncIterator[T], stage: str) -> AsyncIterator[T]:
        """Re-yield ``source`` items, bounding the wait for each by the deadline."""

        async def _next() -> Any:
            try:
                return await source.__anext__()
            except StopAsyncIteration:
                return _EXHAUSTED

        try:
            while True:
                item = await self.run(_next(), stage)
                if item is _EXHAUSTED:
                    return
                yield item
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()


@dataclass
class PreparedTurn:
    """Everything produced before generation starts."""
    context: RetrievalContext
    prompt: RenderedPrompt
    themes: ReviewThemes
    sentiment: SentimentBreakdown
    model: ResolvedModel

    def metadata(self) -> ChatMetadata:
        return ChatMetadata(
            review_count=self.context.count,
            avg_similarity=self.context.avg_similarity,
            model=self.model.model,
            cutoff_reason=self.context.cutoff_reason.value,
            sentiment=self.sentiment.to_dict(),
            themes=self.themes.to_dict(),
            reviews=[ReviewSummary.from_candidate(c) for c in self.context.candidates],
        )


class EnvelopeStream:
    """Bounded queue of envelopes fed by one background turn task.

    Iterate with ``async for``; iteration stops after the terminal envelope. Call
    ``aclose`` when the consumer goes away.
    """

    def __init__(self, runner: Callable[["EnvelopeStream"], Awaitable[None]], maxsize: int = 32) -> None:
        self._runner = runner
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._terminal_emitted = False
        self._finished = False
        self._cancel_reason: Optional[str] = None
        self.state = TurnState.IDLE

    def transition(self, state: TurnState) -> None:
        logger.debug("turn %s -> %s", self.state.value, state.value)
        self.state = state

    async def emit(self, envelope: StreamEnvelope) -> None:
        if self._terminal_emitted:
            logger.warning("Dropping %s envelope emitted after terminal", getattr(envelope, "type", "?"))
            return
        if is_terminal(envelope):
            self._terminal_emitted = True
        await self._queue.put(envelope)

    def _ensure_started(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._runner(self))
            self._task.add_done_callback(self._on_runner_done)

    def _on_runner_done(self, task: asyncio.Task) -> None:
        # a runner that exits without a terminal envelope would leave the consumer waiting
        if task.cancelled() or self._terminal_emitted:
            return
        exc = task.exception()
        logger.error("Turn task exited without a terminal envelope: %r", exc)
        self._terminal_emitted = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(ErrorEnvelope(kind=ReviewRagError.kind, error="Chat turn ended unexpectedly"))

    def __aiter__(self) -> "EnvelopeStream":
        return self

    async def __anext__(self) -> StreamEnvelope:
        if self._finished:
            raise StopAsyncIteration
        if self._cancel_reason is not None:
            return self._finish_cancelled()
        self._ensure_started()
        item = await self._queue.get()
        if item is _CANCEL or self._cancel_reason is not None:
            return self._finish_cancelled()
        if is_terminal(item):
            self._finished = True
        return item

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Abandon the turn; the consumer receives one ``cancelled`` error next."""
        if self._finished or self._cancel_reason is not None:
            return
        self._cancel_reason = reason
        if self._task is not None:
            self._task.cancel()
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_CANCEL)

    def _finish_cancelled(self) -> ErrorEnvelope:
        self._finished = True
        self.state = TurnState.FAILED
        while not self._queue.empty():
            self._queue.get_nowait()
        err = TurnCancelledError(self._cancel_reason or "cancelled by caller")
        return ErrorEnvelope(kind=err.kind, error=err.message)

    async def aclose(self) -> None:
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            # wait() keeps the runner's CancelledError inside the task; a cancel aimed at
            # the caller still propagates out of it
            await asyncio.wait({self._task})

    async def collect(self) -> List[StreamEnvelope]:
        """Drain the stream into a list (used by tests and scripts)."""
        return [env async for env in self]


def history_messages(history: Sequence[HistoryMessage]) -> List[ChatMessage]:
    return [ChatMessage(role=m.role, content=m.content) for m in history]


class ChatOrchestrator:
    def __init__(
        self,
        assembler: ContextBudgetAssembler,
        generators: GenerationRegistry,
        remote_config: RemoteConfig,
        settings: Settings,
    ) -> None:
        self.assembler = assembler
        self.generators = generators
        self.remote_config = remote_config
        self.settings = settings

    async def prepare(self, request: ChatRequest) -> PreparedTurn:
        """Retrieve context, render prompts, compute metadata, and pick the model."""
        cfg = await self.remote_config.snapshot()
        budget = ContextBudget(
            max_candidates=request.max_reviews or cfg.max_context_reviews,
            max_characters=self.settings.MAX_CONTEXT_CHARACTERS,
        )
        threshold = (
            request.similarity_threshold if request.similarity_threshold is not None else cfg.similarity_threshold
        )
        with span("chat.retrieve", {"max_candidates": budget.max_candidates, "threshold": threshold}):
            context = await self.assembler.assemble(
                request.message,
                budget,
                filters=SearchFilters(app_id=request.app_id, platform=request.platform),
                similarity_threshold=threshold,
                provider_id=request.embedding_provider or cfg.embedding_provider,
            )
        with span("chat.build_prompt", {"reviews": context.count}):
            prompt = build_prompt(context, cfg.agent_system_instructions)
            themes = extract_themes(context.candidates)
            sentiment = analyze_sentiment(context.candidates)
        model = resolve_model(request.model or cfg.preferred_model)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(summarize_context(context, model.model))
        return PreparedTurn(context=context, prompt=prompt, themes=themes, sentiment=sentiment, model=model)

    def generation_request(self, prepared: PreparedTurn, history: Sequence[HistoryMessage]) -> GenerationRequest:
        """Messages in fixed order: system prompt, caller history verbatim, grounded user prompt."""
        messages = [ChatMessage(role="system", content=prepared.prompt.system_prompt)]
        messages.extend(history_messages(history))
        messages.append(ChatMessage(role="user", content=prepared.prompt.user_prompt))
        return GenerationRequest(
            model=prepared.model.model,
            messages=messages,
            temperature=self.settings.GENERATION_TEMPERATURE,
        )

    def stream(self, request: ChatRequest, timeout: Optional[float] = None) -> EnvelopeStream:
        """Start a streamed turn; see the module docstring for the envelope contract."""
        seconds = timeout if timeout is not None else self.settings.CHAT_TURN_TIMEOUT_SECONDS

        async def runner(stream: EnvelopeStream) -> None:
            await self._run_turn(request, stream, Deadline(seconds))

        return EnvelopeStream(runner, maxsize=self.settings.STREAM_QUEUE_SIZE)

    async def _run_turn(self, request: ChatRequest, stream: EnvelopeStream, deadline: Deadline) -> None:
        try:
            stream.transition(TurnState.RETRIEVING)
            prepared = await deadline.run(self.prepare(request), "retrieval")
            stream.transition(TurnState.CONTEXT_BUILT)
            await stream.emit(MetadataEnvelope(data=prepared.metadata()))

            gen_request = self.generation_request(prepared, request.conversation_history)
            provider = self.generators.get(prepared.model.family)
            stream.transition(TurnState.GENERATING)
            chunks = 0
            with span("chat.generate", {"model": prepared.model.model, "family": prepared.model.family.value}):
                async for text in deadline.iterate(provider.stream(gen_request), "generation"):
                    chunks += 1
                    await stream.emit(TextEnvelope(data=text))
            stream.transition(TurnState.DONE)
            logger.info("Chat turn done (model=%s, reviews=%d, chunks=%d)",
                        prepared.model.model, prepared.context.count, chunks)
            await stream.emit(DoneEnvelope())
        except ReviewRagError as e:
            await self._fail(stream, e)
        except Exception as e:
            logger.exception("Unexpected error during chat turn")
            if stream.state is TurnState.GENERATING:
                err: ReviewRagError = StreamAbortedError(f"Generation stream failed: {type(e).__name__}")
            else:
                err = ReviewRagError(f"Chat turn failed: {type(e).__name__}")
            await self._fail(stream, err)

    async def _fail(self, stream: EnvelopeStream, err: ReviewRagError) -> None:
        logger.error("Chat turn failed in %s: %s", stream.state.value, err)
        stream.transition(TurnState.FAILED)
        await stream.emit(ErrorEnvelope(kind=err.kind, error=err.message))

    async def complete(self, request: ChatRequest, timeout: Optional[float] = None) -> ChatCompletionResponse:
        """Blocking variant of ``stream``: retrieval, then one non-streaming generation call."""
        seconds = timeout if timeout is not None else self.settings.CHAT_TURN_TIMEOUT_SECONDS
        deadline = Deadline(seconds)
        prepared = await deadline.run(self.prepare(request), "retrieval")
        gen_request = self.generation_request(prepared, request.conversation_history)
        provider = self.generators.get(prepared.model.family)
        with span("chat.generate", {"model": prepared.model.model, "stream": False}):
            text = await deadline.run(provider.complete(gen_request), "generation")
        return ChatCompletionResponse(response=text, metadata=prepared.metadata())

    def _simple_request(
        self, message: str, history: Sequence[HistoryMessage], model: Optional[str], fallback: str
    ) -> Tuple[ResolvedModel, GenerationRequest]:
        resolved = resolve_model(model or fallback)
        messages = history_messages(history) + [ChatMessage(role="user", content=message)]
        return resolved, GenerationRequest(
            model=resolved.model, messages=messages, temperature=self.settings.GENERATION_TEMPERATURE
        )

    async def simple_chat(
        self,
        message: str,
        history: Sequence[HistoryMessage] = (),
        model: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Answer without retrieval. Returns (response text, model id)."""
        resolved, gen_request = self._simple_request(
            message, history, model, await self.remote_config.get("preferred_model")
        )
        deadline = Deadline(self.settings.CHAT_TURN_TIMEOUT_SECONDS)
        text = await deadline.run(self.generators.get(resolved.family).complete(gen_request), "generation")
        return text, resolved.model

    def simple_stream(
        self,
        message: str,
        history: Sequence[HistoryMessage] = (),
        model: Optional[str] = None,
    ) -> EnvelopeStream:
        """Streamed ``simple_chat``: text envelopes then one terminal envelope, no metadata."""

        async def runner(stream: EnvelopeStream) -> None:
            deadline = Deadline(self.settings.CHAT_TURN_TIMEOUT_SECONDS)
            try:
                resolved, gen_request = self._simple_request(
                    message, history, model, await self.remote_config.get("preferred_model")
                )
                stream.transition(TurnState.GENERATING)
                provider = self.generators.get(resolved.family)
                async for text in deadline.iterate(provider.stream(gen_request), "generation"):
                    await stream.emit(TextEnvelope(data=text))
                stream.transition(TurnState.DONE)
                await stream.emit(DoneEnvelope())
            except ReviewRagError as e:
                await self._fail(stream, e)
            except Exception as e:
                logger.exception("Unexpected error during simple chat")
                await self._fail(stream, StreamAbortedError(f"Generation stream failed: {type(e).__name__}"))

        return EnvelopeStream(runner, maxsize=self.settings.STREAM_QUEUE_SIZE)
