from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

import pytest

from imageroll.api.model import InstanceState
from imageroll.api.predicate import ExactFilter, RegexFilter
from imageroll.core.exceptions import (
    AmbiguousMatchError,
    BackendMutationError,
    BackendQueryError,
    NoMatchError,
    StateTransitionTimeoutError,
)
from imageroll.replacement import ReplacementOrchestrator, ReplacementRun, ReplacementState
from tests.conftest import FakeBackend, make_instance


class TestReplaceSingleMatch:
    @pytest.mark.asyncio
    async def test_returns_new_instance_id(self, backend: FakeBackend):
        run = await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert run.new_instance_id == "i-new1"
        assert run.old_instance_id == "i-abc"
        assert run.state == ReplacementState.RUNNING

    @pytest.mark.asyncio
    async def test_calls_happen_in_order(self, backend: FakeBackend):
        await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        after_listing = [c for c in backend.calls if c[0] != "list_instances"]
        assert after_listing == [
            ("stop", "i-abc"),
            ("wait_for_status", "i-abc", InstanceState.STOPPED),
            ("get_info", "i-abc"),
            ("create", "ami-999", "web-01"),
            ("wait_for_status", "i-new1", InstanceState.RUNNING),
        ]

    @pytest.mark.asyncio
    async def test_waits_stopped_then_running(self, backend: FakeBackend):
        await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        waits = [c[1:] for c in backend.calls if c[0] == "wait_for_status"]
        assert waits == [("i-abc", InstanceState.STOPPED), ("i-new1", InstanceState.RUNNING)]

    @pytest.mark.asyncio
    async def test_only_stop_and_create_mutate(self, backend: FakeBackend):
        await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert [c[0] for c in backend.mutations] == ["stop", "create"]

    @pytest.mark.asyncio
    async def test_template_matches_captured_snapshot(self, backend: FakeBackend):
        original = make_instance("i-abc", "web-01")

        await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        [(image, name, template)] = backend.created
        assert image == "ami-999"
        assert name == "web-01"
        assert template == replace(original, state=InstanceState.STOPPED, image="ami-999")
        assert template.instance_type == "t2.micro"
        assert template.block_devices[0].device_name == "/dev/sda1"
        assert template.block_devices[0].volume_size_gb == 50

    @pytest.mark.asyncio
    async def test_history_records_every_state_once(self, backend: FakeBackend):
        run = await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert run.history == [
            ReplacementState.RESOLVED,
            ReplacementState.STOPPING,
            ReplacementState.STOPPED,
            ReplacementState.CREATING,
            ReplacementState.RUNNING,
        ]

    @pytest.mark.asyncio
    async def test_match_on_later_page(self):
        backend = FakeBackend(
            instances=[make_instance(f"i-{n}", f"api-{n}") for n in range(5)]
            + [make_instance("i-last", "worker-1")],
            page_size=2,
        )

        run = await ReplacementOrchestrator(backend).replace(ExactFilter("worker-1"), "ami-2")

        assert run.old_instance_id == "i-last"
        assert backend.call_names.count("list_instances") == 3


class TestReplaceCardinality:
    @pytest.mark.asyncio
    async def test_ambiguous_identifier_mutates_nothing(self, backend: FakeBackend):
        with pytest.raises(AmbiguousMatchError) as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web"), "ami-999")

        assert exc_info.value.matches == ("web-01", "web-02")
        assert exc_info.value.step == "resolve"
        assert backend.mutations == []

    @pytest.mark.asyncio
    async def test_no_match_mutates_nothing(self, backend: FakeBackend):
        with pytest.raises(NoMatchError, match="no instance names match"):
            await ReplacementOrchestrator(backend).replace(RegexFilter("cache"), "ami-999")

        assert backend.mutations == []
        assert "get_info" not in backend.call_names

    @pytest.mark.asyncio
    async def test_listing_failure_is_query_error(self, backend: FakeBackend):
        backend.fail_on["list_instances"] = RuntimeError("throttled")

        with pytest.raises(BackendQueryError, match="throttled") as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert exc_info.value.step == "list"
        assert backend.mutations == []


class TestReplaceFailures:
    @pytest.mark.asyncio
    async def test_stuck_stop_never_creates(self, backend: FakeBackend):
        backend.stuck.add("i-abc")

        with pytest.raises(StateTransitionTimeoutError) as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert exc_info.value.step == "wait-stopped"
        assert exc_info.value.identifier == "web-01"
        assert "create" not in backend.call_names

    @pytest.mark.asyncio
    async def test_old_instance_is_not_restarted(self, backend: FakeBackend):
        backend.stuck.add("i-abc")

        with pytest.raises(StateTransitionTimeoutError):
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert [c[0] for c in backend.mutations] == ["stop"]

    @pytest.mark.asyncio
    async def test_create_failure_keeps_step_context(self, backend: FakeBackend):
        backend.fail_on["create"] = BackendMutationError("InsufficientInstanceCapacity")

        with pytest.raises(BackendMutationError, match="InsufficientInstanceCapacity") as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert str(exc_info.value).startswith("create [web-01]")

    @pytest.mark.asyncio
    async def test_sdk_exception_is_wrapped(self, backend: FakeBackend):
        backend.fail_on["stop"] = RuntimeError("boom")

        with pytest.raises(BackendMutationError) as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert exc_info.value.step == "stop"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_capture_failure_is_query_error(self, backend: FakeBackend):
        backend.fail_on["get_info"] = RuntimeError("describe failed")

        with pytest.raises(BackendQueryError) as exc_info:
            await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert exc_info.value.step == "capture"
        assert "create" not in backend.call_names

    @pytest.mark.asyncio
    async def test_deadline_cancels_wait(self, backend: FakeBackend):
        backend.poll_delay = 1.0

        with pytest.raises(StateTransitionTimeoutError, match="deadline") as exc_info:
            await ReplacementOrchestrator(backend).replace(
                RegexFilter("web-01"), "ami-999", deadline=0.05,
            )

        assert exc_info.value.step == "wait-stopped"
        assert exc_info.value.target == "stopped"
        assert "create" not in backend.call_names


class TestReplaceNaming:
    @pytest.mark.asyncio
    async def test_name_reused_when_backend_allows(self, backend: FakeBackend):
        run = await ReplacementOrchestrator(backend).replace(RegexFilter("web-01"), "ami-999")

        assert run.new_name == "web-01"

    @pytest.mark.asyncio
    async def test_unique_name_derived_when_required(self):
        backend = FakeBackend(
            instances=[make_instance("web-20240101000000", "web-20240101000000")],
            requires_unique_names=True,
            name_separator="-",
        )
        orchestrator = ReplacementOrchestrator(
            backend, now=lambda: datetime(2024, 5, 1, 12, 0, 0),
        )

        run = await orchestrator.replace(RegexFilter("^web-"), "projects/p/global/images/web-v2")

        assert run.new_name == "web-20240501120000"
        assert backend.created[0][1] == "web-20240501120000"

    @pytest.mark.asyncio
    async def test_repeated_replacement_keeps_slot(self):
        backend = FakeBackend(
            instances=[make_instance("web-01", "web-01"), make_instance("web-02", "web-02")],
            requires_unique_names=True,
            name_separator="-",
            max_name_length=63,
            listed_states=frozenset({InstanceState.PENDING, InstanceState.RUNNING}),
        )
        stamps = iter([datetime(2024, 5, 1, 12, 0, 0), datetime(2024, 6, 1, 12, 0, 0)])
        orchestrator = ReplacementOrchestrator(backend, now=lambda: next(stamps))

        first = await orchestrator.replace(RegexFilter("web-01"), "img-v2")
        second = await orchestrator.replace(RegexFilter("web-01"), "img-v3")

        assert first.new_name == "web-01-20240501120000"
        assert second.new_name == "web-01-20240601120000"
        assert [c[1] for c in backend.calls if c[0] == "stop"] == ["web-01", "i-new1"]

    @pytest.mark.asyncio
    async def test_unique_name_fits_backend_limit(self):
        long_name = "a" * 60
        backend = FakeBackend(
            instances=[make_instance("i-long", long_name)],
            requires_unique_names=True,
            name_separator="-",
            max_name_length=63,
        )
        orchestrator = ReplacementOrchestrator(backend, now=lambda: datetime(2024, 5, 1))

        run = await orchestrator.replace(ExactFilter(long_name), "img-v2")

        assert run.new_name == "a" * 48 + "-20240501000000"
        assert len(run.new_name) == 63

    def test_default_clock_is_utc(self, backend: FakeBackend):
        orchestrator = ReplacementOrchestrator(backend)

        assert orchestrator._now().tzinfo is UTC


class TestReplacementRun:
    def test_state_cannot_be_reentered(self):
        run = ReplacementRun(identifier="web-01", image="ami-999")
        run.advance(ReplacementState.RESOLVED)

        with pytest.raises(RuntimeError, match="entered twice"):
            run.advance(ReplacementState.RESOLVED)
