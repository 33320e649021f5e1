"""Generation orchestrator.

Single entry point for one generation lifecycle: create the node, build
the context block, call the provider transport (single-shot or streamed),
write the result into the NodeStore and account for it in the
UsageLedger.

Per generation: pending -> processing -> {completed | failed | cancelled}.
A transport failure always ends in a failed node, never one stuck in
processing. Store invariant violations propagate to the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace

from gentree.config.schema import Config
from gentree.context.builder import ContextBuilder
from gentree.context.selection import ContextSelection
from gentree.context.tokens import count_tokens
from gentree.errors import CancellationError, NotFoundError, StoreError, TransportError
from gentree.generation.transport import ProviderCall, ProviderTransport, coerce_response
from gentree.logging import VERBOSE, get_logger
from gentree.streaming.ingest import StreamIngestor
from gentree.tree.nodes import GenerationNode, StructuredContent
from gentree.tree.state import GenerationMode, NodeStatus, NodeType
from gentree.tree.store import NodeStore
from gentree.usage.ledger import UsageLedger, UsageLevel, classify_usage

log = get_logger("orchestrator")

GENERATION_FAILED = "generation failed"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """One generation request.

    Attributes:
        node_type: Kind of artifact to produce
        mode: Generation mode
        prompt: User prompt
        provider, model: Backend; config defaults when None
        context: Context selection serialized into the request
        vertical: Industry vertical
        parent_id: Attach the new node under this node
        max_tokens: Output token cap; config default when None
    """

    node_type: NodeType
    mode: GenerationMode = GenerationMode.DIRECT
    prompt: str = ""
    provider: str | None = None
    model: str | None = None
    context: ContextSelection | None = None
    vertical: str | None = None
    parent_id: str | None = None
    max_tokens: int | None = None


class GenerationOrchestrator:
    """Tie the store, ledger, context builder and transport together.

    Args:
        store: Node store receiving generated nodes
        ledger: Usage ledger receiving token/cost totals
        transport: Provider transport
        context_builder: Serializes context selections; one bounded by
            ``config.generation.context_max_tokens`` is created if omitted
        config: Defaults and thresholds; built-in defaults if omitted

    Usage:
        orchestrator = GenerationOrchestrator(NodeStore(), UsageLedger(), transport)
        node = await orchestrator.generate_streaming(
            GenerationRequest(NodeType.TITLE, prompt="Ten titles about tide pools")
        )
    """

    def __init__(
        self,
        store: NodeStore,
        ledger: UsageLedger,
        transport: ProviderTransport,
        *,
        context_builder: ContextBuilder | None = None,
        config: Config | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.transport = transport
        self.config = config or Config()
        self.context_builder = context_builder or ContextBuilder(
            max_tokens=self.config.generation.context_max_tokens
        )

        self._ingestors: dict[str, StreamIngestor] = {}
        self._accounted: set[str] = set()

        for provider, limit in self.config.ledger.usage_limits.items():
            self.ledger.set_limit(provider, limit)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def generate_once(self, request: GenerationRequest) -> GenerationNode:
        """Run a single-shot generation and return the terminal node."""
        node, call = self._prepare(request)
        return await self._dispatch_once(node, call)

    async def generate_streaming(self, request: GenerationRequest) -> GenerationNode:
        """Run a streamed generation and return the terminal node.

        Resolves when the stream completes, fails or is cancelled.
        """
        node, call = self._prepare(request)
        return await self._dispatch_stream(node, call)

    async def branch_from(
        self,
        parent_id: str,
        seed_content: str | None,
        *,
        regenerate: bool = False,
        instructions: str | None = None,
        streaming: bool = False,
    ) -> GenerationNode:
        """Fork ``parent_id`` and optionally regenerate the fork.

        Without ``regenerate`` this is a text fork: the pending child holds
        ``seed_content`` and no provider call is made. With it, the child
        is generated like a fresh request; the seed travels in the call and
        the child's content is replaced by the provider output.
        """
        # The child copies these fields from the parent. A failure building
        # the call must leave the tree unchanged.
        parent = self.store.get(parent_id)
        call: ProviderCall | None = None
        tokens_input = 0
        if regenerate and parent is not None:
            call = ProviderCall(
                node_id="",
                prompt=instructions or parent.prompt or "",
                context=self.context_builder.build(parent.context_data),
                provider=parent.provider,
                model=parent.model,
                node_type=parent.node_type,
                mode=parent.mode,
                vertical=parent.vertical,
                max_tokens=self.config.generation.max_tokens,
                seed_content=seed_content,
            )
            tokens_input = self._estimate_input(call)

        child = self.store.branch(parent_id, seed_content)
        log.debug("Branched %s from %s", child.node_id, parent_id)
        if call is None:
            return child

        call = replace(call, node_id=child.node_id)
        self.store.update(child.node_id, content=None, tokens_input=tokens_input)

        if streaming:
            return await self._dispatch_stream(child, call)
        return await self._dispatch_once(child, call)

    def cancel(self, node_id: str) -> bool:
        """Cancel an in-flight stream, keeping its partial content.

        Returns:
            False if ``node_id`` has no stream in flight.
        """
        ingestor = self._ingestors.get(node_id)
        if ingestor is None:
            return False
        return ingestor.cancel()

    def soft_delete(self, node_id: str) -> bool:
        """Cancel any in-flight stream for the node, then tombstone it."""
        self.cancel(node_id)
        return self.store.soft_delete(node_id)

    def preview_context(self, selection: ContextSelection | None) -> str:
        """Return the context block a request with ``selection`` would send."""
        return self.context_builder.build(selection)

    def in_flight(self) -> list[str]:
        """Node ids with a stream in flight."""
        return list(self._ingestors)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _prepare(self, request: GenerationRequest) -> tuple[GenerationNode, ProviderCall]:
        defaults = self.config.generation
        provider = request.provider or defaults.provider
        model = request.model or defaults.model

        node = GenerationNode.create(
            request.node_type,
            request.mode,
            provider=provider,
            model=model,
            parent_id=request.parent_id,
            prompt=request.prompt,
            vertical=request.vertical,
            context_data=request.context,
            created_at=self.store.now(),
        )
        call = ProviderCall(
            node_id=node.node_id,
            prompt=request.prompt,
            context=self.context_builder.build(request.context),
            provider=provider,
            model=model,
            node_type=request.node_type,
            mode=request.mode,
            vertical=request.vertical,
            max_tokens=request.max_tokens or defaults.max_tokens,
        )

        node = self.store.insert(replace(node, tokens_input=self._estimate_input(call)))
        return node, call

    def _estimate_input(self, call: ProviderCall) -> int:
        return (
            count_tokens(call.prompt, call.model)
            + count_tokens(call.context, call.model)
            + count_tokens(call.seed_content, call.model)
        )

    async def _dispatch_once(self, node: GenerationNode, call: ProviderCall) -> GenerationNode:
        node_id = node.node_id
        self.store.update(node_id, status=NodeStatus.PROCESSING)
        log.log(VERBOSE, "Generating %s (%s/%s) single-shot", node_id, call.provider, call.model)

        try:
            response = coerce_response(await self.transport.complete(call))
        except asyncio.CancelledError:
            self.store.update(node_id, status=NodeStatus.CANCELLED)
            self._settle(node_id)
            raise
        except CancellationError:
            self.store.update(node_id, status=NodeStatus.CANCELLED)
            log.debug("Generation %s aborted by transport", node_id)
            return self._settle(node_id)
        except StoreError:
            raise
        except Exception as e:
            return self._fail(node_id, _describe(e))

        if not response.success:
            return self._fail(node_id, response.error or GENERATION_FAILED)

        structured = None
        if response.metadata:
            current = self.store.get(node_id, include_deleted=True)
            base = current.structured_content if current else None
            structured = (base or StructuredContent()).with_metadata(response.metadata)

        changes = {
            "status": NodeStatus.COMPLETED,
            "content": response.content,
            "tokens_output": response.tokens_used,
            "cost": response.cost,
            "duration_ms": response.duration_ms,
        }
        if structured is not None:
            changes["structured_content"] = structured
        self.store.update(node_id, **changes)
        return self._settle(node_id)

    async def _dispatch_stream(self, node: GenerationNode, call: ProviderCall) -> GenerationNode:
        node_id = node.node_id
        self.store.update(node_id, status=NodeStatus.PROCESSING)
        log.log(VERBOSE, "Generating %s (%s/%s) streamed", node_id, call.provider, call.model)

        streaming = self.config.streaming
        ingestor = StreamIngestor(
            self.store,
            node_id,
            yield_between_chunks=streaming.yield_between_chunks,
            max_line_bytes=streaming.max_line_bytes,
        )
        self._ingestors[node_id] = ingestor
        try:
            try:
                source = await self.transport.open_stream(call)
            except asyncio.CancelledError:
                ingestor.cancel()
                raise
            except CancellationError:
                ingestor.cancel()
                return self._settle(node_id)
            except StoreError:
                raise
            except Exception as e:
                if ingestor.cancelled:
                    return self._settle(node_id)
                return self._fail(node_id, _describe(e))

            await ingestor.run(source)
        except asyncio.CancelledError:
            self._settle(node_id)
            raise
        finally:
            self._ingestors.pop(node_id, None)

        return self._settle(node_id)

    def _fail(self, node_id: str, message: str) -> GenerationNode:
        self.store.update(node_id, status=NodeStatus.FAILED, error_message=message)
        log.warning("Generation %s failed: %s", node_id, message)
        return self._settle(node_id)

    def _settle(self, node_id: str) -> GenerationNode:
        """Account for a terminal node exactly once."""
        node = self.store.get(node_id, include_deleted=True)
        if node is None:
            raise NotFoundError(node_id)
        if not node.is_terminal or node_id in self._accounted:
            return node
        self._accounted.add(node_id)

        if node.status is NodeStatus.COMPLETED:
            self.ledger.record_usage(node.provider, node.tokens_output, node.cost)
            self.ledger.record_outcome(True)
            self._check_usage(node.provider)
        elif node.status is NodeStatus.FAILED:
            self.ledger.record_outcome(False)
        log.debug("Generation %s settled as %s", node_id, node.status)
        return node

    def _check_usage(self, provider: str) -> None:
        thresholds = self.config.ledger
        ratio = self.ledger.usage_ratio(provider)
        level = classify_usage(ratio, thresholds.warning_ratio, thresholds.critical_ratio)
        if level in (UsageLevel.WARNING, UsageLevel.CRITICAL):
            log.warning("%s usage at %.0f%% of limit (%s)", provider, ratio * 100, level)


def _describe(error: Exception) -> str:
    if isinstance(error, TransportError):
        return str(error)
    return f"{type(error).__name__}: {error}"
