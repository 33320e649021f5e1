"""Tests for the GenerationOrchestrator lifecycle and accounting."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from gentree.config import Config, LedgerConfig
from gentree.context import ContextBuilder, ContextLibrary, ContextSelection, StyleGuide
from gentree.context.selection import StyleGuideSelection
from gentree.errors import CancellationError, DanglingParentError, TransportError
from gentree.generation import GenerationOrchestrator, GenerationRequest
from gentree.streaming import ProviderResponse
from gentree.tree import GenerationMode, NodeStatus, NodeStore, NodeType
from gentree.usage import UsageLedger
from tests.utils import ByteChunkSource, FakeTransport, make_node, sse, sse_stream, wait_until


def _orchestrator(
    store: NodeStore, ledger: UsageLedger, transport: FakeTransport, **kwargs
) -> GenerationOrchestrator:
    return GenerationOrchestrator(store, ledger, transport, **kwargs)


def _request(**kwargs) -> GenerationRequest:
    kwargs.setdefault("node_type", NodeType.IDEA)
    kwargs.setdefault("prompt", "Write about tide pools")
    return GenerationRequest(**kwargs)


@pytest.fixture
def spy_ledger() -> Mock:
    """A real ledger wrapped so calls can be counted."""
    return Mock(wraps=UsageLedger())


class TestGenerateOnce:
    """Tests for single-shot generation."""

    async def test_success(self, store: NodeStore, spy_ledger: Mock) -> None:
        transport = FakeTransport(
            response={"success": True, "content": "Idea!", "tokensUsed": 30, "cost": 0.01, "durationMs": 850}
        )
        orchestrator = _orchestrator(store, spy_ledger, transport)

        node = await orchestrator.generate_once(_request())

        assert node.status is NodeStatus.COMPLETED
        assert node.content == "Idea!"
        assert node.tokens_output == 30
        assert node.duration_ms == 850
        assert node.tokens_input > 0
        assert node.provider == "openai"
        assert node.prompt == "Write about tide pools"
        spy_ledger.record_usage.assert_called_once_with("openai", 30, 0.01)
        spy_ledger.record_outcome.assert_called_once_with(True)

    async def test_passes_through_processing(self, store: NodeStore, ledger: UsageLedger) -> None:
        statuses: list[NodeStatus] = []
        store.subscribe(lambda e: statuses.append(e.node.status))
        transport = FakeTransport(response=ProviderResponse(success=True, content="x"))

        await _orchestrator(store, ledger, transport).generate_once(_request())

        assert statuses == [NodeStatus.PENDING, NodeStatus.PROCESSING, NodeStatus.COMPLETED]

    async def test_provider_failure(self, store: NodeStore, spy_ledger: Mock) -> None:
        transport = FakeTransport(response={"success": False, "error": "quota exceeded"})
        node = await _orchestrator(store, spy_ledger, transport).generate_once(_request())

        assert node.status is NodeStatus.FAILED
        assert node.error_message == "quota exceeded"
        spy_ledger.record_usage.assert_not_called()
        spy_ledger.record_outcome.assert_called_once_with(False)

    async def test_transport_error_never_stuck(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=TransportError("HTTP 502", status_code=502))
        node = await _orchestrator(store, ledger, transport).generate_once(_request())
        assert node.status is NodeStatus.FAILED
        assert node.error_message == "HTTP 502"

    async def test_unexpected_transport_exception(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=RuntimeError("socket gone"))
        node = await _orchestrator(store, ledger, transport).generate_once(_request())
        assert node.status is NodeStatus.FAILED
        assert "socket gone" in node.error_message

    async def test_transport_abort_cancels(self, store: NodeStore, spy_ledger: Mock) -> None:
        transport = FakeTransport(response=CancellationError("aborted"))
        node = await _orchestrator(store, spy_ledger, transport).generate_once(_request())

        assert node.status is NodeStatus.CANCELLED
        assert node.error_message is None
        spy_ledger.record_usage.assert_not_called()
        spy_ledger.record_outcome.assert_not_called()
        assert spy_ledger.totals().failure_count == 0

    async def test_timestamps_use_store_clock(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True, content="x"))
        node = await _orchestrator(store, ledger, transport).generate_once(_request())

        assert 1000.0 < node.created_at < node.completed_at < 1100.0

    async def test_invalid_response_fails(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response={"content": "no success flag"})
        node = await _orchestrator(store, ledger, transport).generate_once(_request())
        assert node.status is NodeStatus.FAILED
        assert "Invalid provider response" in node.error_message

    async def test_missing_parent_propagates(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True))
        with pytest.raises(DanglingParentError):
            await _orchestrator(store, ledger, transport).generate_once(
                _request(parent_id="node_missing")
            )
        assert transport.calls == []

    async def test_context_block_sent(self, store: NodeStore, ledger: UsageLedger) -> None:
        library = ContextLibrary(style_guides=[StyleGuide("brand", "Brand", "brand", "Be warm.")])
        transport = FakeTransport(response=ProviderResponse(success=True, content="x"))
        orchestrator = _orchestrator(
            store, ledger, transport, context_builder=ContextBuilder(library)
        )
        selection = ContextSelection(style_guides=StyleGuideSelection(brand=True))

        node = await orchestrator.generate_once(_request(context=selection))

        assert transport.calls[0].context == orchestrator.preview_context(selection)
        assert "Be warm." in transport.calls[0].context
        assert node.context_data == selection

    async def test_config_defaults_applied(self, store: NodeStore, ledger: UsageLedger) -> None:
        config = Config()
        config.generation.provider = "anthropic"
        config.generation.model = "claude-house"
        config.generation.max_tokens = 512
        transport = FakeTransport(response=ProviderResponse(success=True))

        node = await _orchestrator(store, ledger, transport, config=config).generate_once(
            _request()
        )

        assert (node.provider, node.model) == ("anthropic", "claude-house")
        assert transport.calls[0].max_tokens == 512


class TestGenerateStreaming:
    """Tests for streamed generation."""

    async def test_scenario_a_via_orchestrator(self, store: NodeStore, spy_ledger: Mock) -> None:
        source = ByteChunkSource(
            [sse_stream({"content": "Hel"}, {"content": "lo"}, {"type": "complete", "tokensUsed": 12, "cost": 0.002})]
        )
        orchestrator = _orchestrator(store, spy_ledger, FakeTransport(source=source))

        node = await orchestrator.generate_streaming(_request())

        assert node.content == "Hello"
        assert node.status is NodeStatus.COMPLETED
        assert spy_ledger.totals().total_cost == pytest.approx(0.002)
        spy_ledger.record_usage.assert_called_once_with("openai", 12, 0.002)
        assert orchestrator.in_flight() == []

    async def test_scenario_d_error_chunk(self, store: NodeStore, spy_ledger: Mock) -> None:
        source = ByteChunkSource(
            [sse_stream({"content": "a"}, {"content": "b"}, {"type": "error", "error": "overloaded"})]
        )
        node = await _orchestrator(store, spy_ledger, FakeTransport(source=source)).generate_streaming(
            _request()
        )
        assert node.status is NodeStatus.FAILED
        assert node.content == "ab"
        assert node.error_message == "overloaded"
        spy_ledger.record_usage.assert_not_called()
        spy_ledger.record_outcome.assert_called_once_with(False)

    async def test_open_stream_failure(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(source=TransportError("connect timeout"))
        node = await _orchestrator(store, ledger, transport).generate_streaming(_request())
        assert node.status is NodeStatus.FAILED
        assert node.error_message == "connect timeout"

    async def test_open_stream_abort_cancels(self, store: NodeStore, spy_ledger: Mock) -> None:
        transport = FakeTransport(source=CancellationError("aborted"))
        orchestrator = _orchestrator(store, spy_ledger, transport)

        node = await orchestrator.generate_streaming(_request())

        assert node.status is NodeStatus.CANCELLED
        assert node.error_message is None
        spy_ledger.record_outcome.assert_not_called()
        assert spy_ledger.totals().failure_count == 0
        assert orchestrator.in_flight() == []

    async def test_scenario_c_cancel(self, store: NodeStore, spy_ledger: Mock) -> None:
        source = ByteChunkSource([sse(content="partial")], hold_open=True)
        orchestrator = _orchestrator(store, spy_ledger, FakeTransport(source=source))
        task = asyncio.ensure_future(orchestrator.generate_streaming(_request()))

        await wait_until(lambda: bool(orchestrator.in_flight()))
        node_id = orchestrator.in_flight()[0]
        await wait_until(lambda: store.get(node_id).content == "partial")

        assert orchestrator.cancel(node_id) is True
        node = await task

        assert node.status is NodeStatus.CANCELLED
        assert node.content == "partial"
        assert source.closed
        spy_ledger.record_usage.assert_not_called()
        spy_ledger.record_outcome.assert_not_called()
        assert orchestrator.cancel(node_id) is False

    async def test_cancel_unknown_node(self, store: NodeStore, ledger: UsageLedger) -> None:
        orchestrator = _orchestrator(store, ledger, FakeTransport())
        assert orchestrator.cancel("node_missing") is False

    async def test_concurrent_streams_independent(self, store: NodeStore, ledger: UsageLedger) -> None:
        held = ByteChunkSource([sse(content="slow")], hold_open=True)
        done = ByteChunkSource([sse_stream({"content": "fast"}, {"type": "complete", "cost": 0.1})])

        class TwoStreams(FakeTransport):
            async def open_stream(self, call):
                self.calls.append(call)
                return held if len(self.calls) == 1 else done

        orchestrator = _orchestrator(store, ledger, TwoStreams())
        slow = asyncio.ensure_future(orchestrator.generate_streaming(_request()))
        await wait_until(lambda: len(orchestrator.in_flight()) == 1)
        fast = await orchestrator.generate_streaming(_request(node_type=NodeType.TITLE))

        assert fast.status is NodeStatus.COMPLETED
        slow_id = orchestrator.in_flight()[0]
        assert store.get(slow_id).status is NodeStatus.PROCESSING

        orchestrator.cancel(slow_id)
        assert (await slow).status is NodeStatus.CANCELLED
        assert ledger.totals().total_cost == pytest.approx(0.1)

    async def test_caller_cancellation_propagates(self, store: NodeStore, ledger: UsageLedger) -> None:
        source = ByteChunkSource([sse(content="x")], hold_open=True)
        orchestrator = _orchestrator(store, ledger, FakeTransport(source=source))
        task = asyncio.ensure_future(orchestrator.generate_streaming(_request()))
        await wait_until(lambda: bool(orchestrator.in_flight()))
        node_id = orchestrator.in_flight()[0]
        await wait_until(lambda: store.get(node_id).content == "x")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.get(node_id).status is NodeStatus.CANCELLED
        assert orchestrator.in_flight() == []


class TestBranchFrom:
    """Tests for branch_from (Scenario B)."""

    async def test_text_fork(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True, content="Hello"))
        orchestrator = _orchestrator(store, ledger, transport)
        parent = await orchestrator.generate_once(_request())

        child = await orchestrator.branch_from(parent.node_id, "Hello world")

        assert child.status is NodeStatus.PENDING
        assert child.content == "Hello world"
        assert child.parent_id == parent.node_id
        assert child.root_id == parent.node_id
        assert child.node_id in store.get(parent.node_id).children
        assert len(transport.calls) == 1

    async def test_regenerate_once(self, store: NodeStore, spy_ledger: Mock) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True, content="v1", cost=0.1))
        orchestrator = _orchestrator(store, spy_ledger, transport)
        parent = await orchestrator.generate_once(_request(mode=GenerationMode.STRUCTURED))

        transport.response = ProviderResponse(success=True, content="v2", cost=0.2)
        child = await orchestrator.branch_from(
            parent.node_id, "v1 edited", regenerate=True, instructions="Make it punchier"
        )

        assert child.status is NodeStatus.COMPLETED
        assert child.content == "v2"
        assert child.mode is GenerationMode.STRUCTURED
        call = transport.calls[-1]
        assert call.prompt == "Make it punchier"
        assert call.seed_content == "v1 edited"
        assert store.get(parent.node_id).content == "v1"
        assert spy_ledger.record_usage.call_count == 2

    async def test_regenerate_streaming(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True, content="v1"))
        orchestrator = _orchestrator(store, ledger, transport)
        parent = await orchestrator.generate_once(_request())

        transport.source = ByteChunkSource(
            [sse_stream({"content": "fresh"}, {"type": "complete"})]
        )
        child = await orchestrator.branch_from(
            parent.node_id, "seed", regenerate=True, streaming=True
        )
        assert child.status is NodeStatus.COMPLETED
        assert child.content == "fresh"

    async def test_branch_from_missing_parent(self, store: NodeStore, ledger: UsageLedger) -> None:
        orchestrator = _orchestrator(store, ledger, FakeTransport())
        with pytest.raises(DanglingParentError):
            await orchestrator.branch_from("node_missing", "x")
        with pytest.raises(DanglingParentError):
            await orchestrator.branch_from("node_missing", "x", regenerate=True)

    async def test_regenerate_setup_failure_adds_no_child(
        self, store: NodeStore, ledger: UsageLedger
    ) -> None:
        parent = store.insert(make_node(prompt="Write about tide pools"))
        builder = Mock(spec=ContextBuilder)
        builder.build.side_effect = RuntimeError("encoding unavailable")
        transport = FakeTransport(response=ProviderResponse(success=True, content="v2"))
        orchestrator = _orchestrator(store, ledger, transport, context_builder=builder)

        with pytest.raises(RuntimeError, match="encoding unavailable"):
            await orchestrator.branch_from(parent.node_id, "seed", regenerate=True)

        assert store.get(parent.node_id).children == ()
        assert len(store) == 1
        assert transport.calls == []


class TestSoftDelete:
    """Tests for soft_delete through the orchestrator (Scenario E)."""

    async def test_soft_delete_keeps_children(self, store: NodeStore, ledger: UsageLedger) -> None:
        transport = FakeTransport(response=ProviderResponse(success=True, content="root"))
        orchestrator = _orchestrator(store, ledger, transport)
        root = await orchestrator.generate_once(_request())
        child = await orchestrator.branch_from(root.node_id, "fork")

        assert orchestrator.soft_delete(root.node_id) is True

        assert store.roots() == []
        assert store.get(child.node_id) is not None
        assert store.get(child.parent_id, include_deleted=True).deleted

    async def test_soft_delete_cancels_in_flight(self, store: NodeStore, ledger: UsageLedger) -> None:
        source = ByteChunkSource([sse(content="x")], hold_open=True)
        orchestrator = _orchestrator(store, ledger, FakeTransport(source=source))
        task = asyncio.ensure_future(orchestrator.generate_streaming(_request()))
        await wait_until(lambda: bool(orchestrator.in_flight()))
        node_id = orchestrator.in_flight()[0]

        assert orchestrator.soft_delete(node_id) is True
        node = await task

        assert node.status is NodeStatus.CANCELLED
        assert node.deleted
        assert source.closed


class TestUsageWarnings:
    """Tests for limit warnings after accounting."""

    async def test_warns_near_limit(
        self, store: NodeStore, ledger: UsageLedger, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = Config(ledger=LedgerConfig(usage_limits={"openai": 1.0}))
        transport = FakeTransport(response=ProviderResponse(success=True, cost=0.95))
        await _orchestrator(store, ledger, transport, config=config).generate_once(_request())
        assert ledger.usage_ratio("openai") == pytest.approx(0.95)
        assert "usage at 95% of limit" in caplog.text
