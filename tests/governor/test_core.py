"""
Tests for RequestGovernor.

Covers:
- per-role limits and the synchronous gate
- lazy window rollover at reset_at
- freeze precedence over the window state
- waiter timing on a fake clock (never early, never late)
- mutation events and metrics
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import orjson
import pytest

from quotagate.config import GovernorConfig
from quotagate.governor import (
    UNKNOWN_ROLE,
    BlockReason,
    FreezePolicy,
    GovernorEvent,
    GovernorEventType,
    RequestGovernor,
    WindowKey,
)
from quotagate.quota import QuotaEntry, QuotaTable, Role

if TYPE_CHECKING:
    from conftest import FakeClock


def make_governor(clock: FakeClock, quotas: QuotaTable | None = None) -> RequestGovernor:
    return RequestGovernor(
        quotas=quotas or QuotaTable.default(),
        _time_fn=clock,
        _sleep_fn=clock.sleep,
    )


class TestGovernorConstruction:
    """Tests for governor validation and config wiring."""

    @pytest.mark.parametrize("interval", [0, -1, 1000, 1500])
    def test_poll_interval_must_be_sub_second(self, interval: int) -> None:
        with pytest.raises(ValueError, match="wait_poll_interval_ms"):
            RequestGovernor(wait_poll_interval_ms=interval)

    def test_negative_max_wait_rejected(self) -> None:
        with pytest.raises(ValueError, match="default_max_wait_ms"):
            RequestGovernor(default_max_wait_ms=-1)

    def test_from_config(self, clock: FakeClock) -> None:
        """from_config carries quotas, waiter settings and the default freeze."""
        config = GovernorConfig(
            quotas=QuotaTable.from_mapping({"student": 7}),
            wait_poll_interval_ms=50,
            default_max_wait_ms=2_000,
            freeze_policy=FreezePolicy(default_freeze_ms=30_000),
        )
        governor = RequestGovernor.from_config(config, _time_fn=clock)
        assert governor.wait_poll_interval_ms == 50
        assert governor.default_max_wait_ms == 2_000
        assert governor.default_freeze_ms == 30_000
        assert governor.status(Role.STUDENT).limit == 7


class TestStatusAndGate:
    """Tests for status() and can_make_request()."""

    def test_fresh_key_status(self, governor: RequestGovernor, clock: FakeClock) -> None:
        status = governor.status(Role.STUDENT)
        assert status.role == "student"
        assert status.endpoint == "default"
        assert status.limit == 100
        assert status.current == 0
        assert status.remaining == 100
        assert status.reset_time_ms == clock.now_ms + 60_000
        assert governor.can_make_request(Role.STUDENT)
        assert governor.block_reason(Role.STUDENT) == BlockReason.OPEN

    @pytest.mark.parametrize("role", list(Role))
    def test_exactly_limit_requests_close_gate(self, clock: FakeClock, role: Role) -> None:
        """After exactly L records within the window the gate closes."""
        governor = make_governor(clock)
        limit = governor.quotas.limit_for(role).limit
        for _ in range(limit - 1):
            governor.record_request(role)
        assert governor.can_make_request(role)
        governor.record_request(role)
        assert not governor.can_make_request(role)
        assert governor.status(role).remaining == 0
        assert governor.block_reason(role) == BlockReason.QUOTA_EXCEEDED

    def test_scenario_student_window(self, clock: FakeClock) -> None:
        """30 records at t=0 close the gate until the window rolls over."""
        quotas = QuotaTable([QuotaEntry(role=Role.STUDENT, limit=30, window_ms=60_000)])
        governor = make_governor(clock, quotas)
        for _ in range(30):
            governor.record_request("student")
        assert not governor.can_make_request("student")

        clock.set_elapsed(60_001)
        assert governor.can_make_request("student")
        assert governor.status("student").current == 0

    def test_rollover_exactly_at_reset(self, governor: RequestGovernor, clock: FakeClock) -> None:
        """current resets when now reaches reset_at, not a millisecond before."""
        governor.record_request(Role.STUDENT)
        reset_at = governor.status(Role.STUDENT).reset_time_ms

        clock.now_ms = reset_at - 1
        assert governor.status(Role.STUDENT).current == 1
        clock.now_ms = reset_at
        assert governor.status(Role.STUDENT).current == 0

    def test_endpoints_are_separate_buckets(
        self, clock: FakeClock, small_quotas: QuotaTable
    ) -> None:
        governor = make_governor(clock, small_quotas)
        for _ in range(3):
            governor.record_request(Role.STUDENT, "/courses")
        assert not governor.can_make_request(Role.STUDENT, "/courses")
        assert governor.can_make_request(Role.STUDENT, "/grades")
        assert governor.can_make_request(Role.STUDENT)

    def test_unknown_role_uses_most_restrictive(self, governor: RequestGovernor) -> None:
        status = governor.status("visitor")
        assert status.role == "visitor"
        assert status.limit == 30

    @pytest.mark.parametrize("role", ["", "   "])
    def test_blank_role_is_restricted_not_an_error(
        self, governor: RequestGovernor, role: str
    ) -> None:
        status = governor.status(role)
        assert status.role == UNKNOWN_ROLE
        assert status.limit == 30
        assert governor.can_make_request(role)

        for _ in range(30):
            governor.record_request(role)
        assert not governor.can_make_request(role)
        assert governor.status("").current == 30

    def test_gate_is_side_effect_free(self, governor: RequestGovernor) -> None:
        """Gate and status calls never create state or touch metrics."""
        for _ in range(50):
            assert governor.can_make_request(Role.TEACHER, "/x")
            governor.status(Role.TEACHER, "/x")
            governor.block_reason(Role.TEACHER, "/x")
        assert governor.status(Role.TEACHER, "/x").current == 0
        assert governor.get_status()["tracked_windows"] == 0
        assert governor.metrics.requests_recorded == 0

    def test_record_returns_count_and_tracks_overflow(self, governor: RequestGovernor) -> None:
        for expected in range(1, 31):
            assert governor.record_request(Role.ANONYMOUS) == expected
        assert governor.metrics.requests_over_limit == 0
        assert governor.record_request(Role.ANONYMOUS) == 31
        assert governor.metrics.requests_over_limit == 1
        assert governor.metrics.requests_recorded == 31

    def test_status_to_json(self, governor: RequestGovernor) -> None:
        governor.record_request(Role.STUDENT, "/courses")
        data = orjson.loads(governor.status(Role.STUDENT, "/courses").to_json())
        assert data["endpoint"] == "/courses"
        assert data["current"] == 1
        assert data["remaining"] == 99


class TestFreeze:
    """Tests for report_frozen() and freeze precedence."""

    def test_scenario_teacher_freeze(self, governor: RequestGovernor, clock: FakeClock) -> None:
        """A freeze closes the gate despite window headroom, until it ends."""
        for _ in range(190):
            governor.record_request("teacher")
        assert governor.status("teacher").remaining == 10

        governor.report_frozen("teacher", duration_ms=60_000)
        clock.set_elapsed(59_999)
        assert not governor.can_make_request("teacher")
        clock.set_elapsed(60_001)
        assert governor.can_make_request("teacher")

    def test_frozen_wins_over_quota(self, clock: FakeClock, small_quotas: QuotaTable) -> None:
        """A freeze outlasting the window keeps the gate closed after reset."""
        governor = make_governor(clock, small_quotas)
        for _ in range(3):
            governor.record_request(Role.STUDENT)
        governor.report_frozen(Role.STUDENT, duration_ms=5_000)
        assert governor.block_reason(Role.STUDENT) == BlockReason.FROZEN

        clock.advance(1_000)
        assert governor.status(Role.STUDENT).current == 0
        assert governor.block_reason(Role.STUDENT) == BlockReason.FROZEN
        assert not governor.can_make_request(Role.STUDENT)

        clock.advance(4_000)
        assert governor.block_reason(Role.STUDENT) == BlockReason.OPEN

    def test_status_ignores_freeze(self, governor: RequestGovernor) -> None:
        governor.report_frozen(Role.STUDENT, duration_ms=10_000)
        assert governor.status(Role.STUDENT).remaining == 100

    def test_default_freeze_duration(self, governor: RequestGovernor, clock: FakeClock) -> None:
        until = governor.report_frozen(Role.ADMIN)
        assert until == clock.now_ms + 120_000
        assert governor.freeze_end_time(Role.ADMIN) == until

    def test_freeze_is_per_key(self, governor: RequestGovernor) -> None:
        governor.report_frozen(Role.STUDENT, "/a", duration_ms=10_000)
        assert not governor.can_make_request(Role.STUDENT, "/a")
        assert governor.can_make_request(Role.STUDENT, "/b")
        assert governor.freeze_end_time(Role.STUDENT, "/b") is None

    def test_clear_resets_everything(self, governor: RequestGovernor) -> None:
        governor.record_request(Role.STUDENT)
        governor.report_frozen(Role.STUDENT, duration_ms=10_000)
        governor.clear()
        assert governor.can_make_request(Role.STUDENT)
        assert governor.status(Role.STUDENT).current == 0
        assert governor.get_status()["active_freezes"] == 0


class TestWaitForAvailableSlot:
    """Tests for the async waiter on a fake clock."""

    @pytest.mark.asyncio
    async def test_open_resolves_immediately(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        assert await governor.wait_for_available_slot(Role.STUDENT)
        assert clock.sleeps == []
        assert governor.metrics.waits_granted == 1

    @pytest.mark.asyncio
    async def test_wait_does_not_record(self, governor: RequestGovernor) -> None:
        assert await governor.wait_for_available_slot(Role.STUDENT)
        assert governor.status(Role.STUDENT).current == 0

    @pytest.mark.asyncio
    async def test_scenario_long_freeze_times_out(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        """Frozen for 10s more with a 5s budget: False at t=5000."""
        governor.report_frozen(Role.STUDENT, duration_ms=10_000)
        assert not await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=5_000)
        assert clock.elapsed_ms == 5_000
        assert governor.metrics.waits_timed_out == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("freeze_ms", [1, 150, 3_000, 4_999])
    async def test_freeze_shorter_than_budget(
        self, governor: RequestGovernor, clock: FakeClock, freeze_ms: int
    ) -> None:
        """D < max_wait: True exactly when the freeze ends."""
        governor.report_frozen(Role.STUDENT, duration_ms=freeze_ms)
        assert await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=5_000)
        assert clock.elapsed_ms == freeze_ms

    @pytest.mark.asyncio
    @pytest.mark.parametrize("freeze_ms", [5_000, 5_001, 60_000])
    async def test_freeze_not_shorter_than_budget(
        self, governor: RequestGovernor, clock: FakeClock, freeze_ms: int
    ) -> None:
        """D >= max_wait: False once max_wait elapsed, never before."""
        governor.report_frozen(Role.STUDENT, duration_ms=freeze_ms)
        assert not await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=5_000)
        assert clock.elapsed_ms == 5_000

    @pytest.mark.asyncio
    async def test_sleep_cut_short_at_clear_time(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        """Polls every 100ms but lands exactly on the freeze end."""
        governor.report_frozen(Role.STUDENT, duration_ms=150)
        assert await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=5_000)
        assert clock.sleeps == [100, 50]

    @pytest.mark.asyncio
    async def test_waits_for_window_reset(self, clock: FakeClock, small_quotas: QuotaTable) -> None:
        governor = make_governor(clock, small_quotas)
        for _ in range(3):
            governor.record_request(Role.STUDENT)
        assert await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=5_000)
        assert clock.elapsed_ms == 1_000
        assert governor.metrics.waits_granted == 1
        assert governor.metrics.max_wait_ms == 1_000
        assert governor.metrics.total_wait_ms == 1_000

    @pytest.mark.asyncio
    async def test_zero_budget_while_blocked(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        governor.report_frozen(Role.STUDENT, duration_ms=1_000)
        assert not await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=0)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_default_budget(self, governor: RequestGovernor, clock: FakeClock) -> None:
        governor.report_frozen(Role.STUDENT, duration_ms=60_000)
        assert not await governor.wait_for_available_slot(Role.STUDENT)
        assert clock.elapsed_ms == 5_000

    @pytest.mark.asyncio
    async def test_real_event_loop(self) -> None:
        """Without injected clock/sleep the waiter runs on asyncio.sleep."""
        governor = RequestGovernor(wait_poll_interval_ms=10)
        governor.report_frozen(Role.STUDENT, duration_ms=30)
        assert await governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=2_000)

    @pytest.mark.asyncio
    async def test_waiter_yields_to_other_tasks(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        """Other tasks run while a waiter is suspended."""
        governor.report_frozen(Role.STUDENT, duration_ms=300)
        ticks: list[int] = []

        async def ticker() -> None:
            for _ in range(3):
                ticks.append(clock.now_ms)
                await asyncio.sleep(0)

        result, _ = await asyncio.gather(
            governor.wait_for_available_slot(Role.STUDENT, max_wait_ms=1_000),
            ticker(),
        )
        assert result is True
        assert len(ticks) == 3


class TestSubscription:
    """Tests for mutation events."""

    def test_events_published(self, governor: RequestGovernor) -> None:
        events: list[GovernorEvent] = []
        governor.subscribe(events.append)

        governor.record_request(Role.STUDENT, "/a")
        governor.report_frozen(Role.STUDENT, "/a", duration_ms=1_000)
        governor.clear()

        assert [e.type for e in events] == [
            GovernorEventType.REQUEST_RECORDED,
            GovernorEventType.FROZEN,
            GovernorEventType.CLEARED,
        ]
        assert events[0].key == WindowKey.of(Role.STUDENT, "/a")
        assert events[2].key is None

    def test_queries_do_not_publish(self, governor: RequestGovernor) -> None:
        events: list[GovernorEvent] = []
        governor.subscribe(events.append)
        governor.can_make_request(Role.STUDENT)
        governor.status(Role.STUDENT)
        governor.freeze_end_time(Role.STUDENT)
        assert events == []

    def test_unsubscribe(self, governor: RequestGovernor) -> None:
        events: list[GovernorEvent] = []
        unsubscribe = governor.subscribe(events.append)
        assert governor.get_status()["listeners"] == 1
        unsubscribe()
        unsubscribe()
        governor.record_request(Role.STUDENT)
        assert events == []
        assert governor.get_status()["listeners"] == 0


class TestGovernorMetrics:
    """Tests for GovernorMetrics."""

    def test_reset(self, governor: RequestGovernor) -> None:
        governor.record_request(Role.STUDENT)
        governor.report_frozen(Role.STUDENT)
        governor.metrics.reset()
        assert governor.metrics.requests_recorded == 0
        assert governor.metrics.freezes_reported == 0

    def test_get_status(self, governor: RequestGovernor) -> None:
        governor.record_request(Role.STUDENT, "/a")
        governor.record_request(Role.TEACHER)
        governor.report_frozen(Role.STUDENT, "/a", duration_ms=1_000)
        status = governor.get_status()
        assert status["tracked_windows"] == 2
        assert status["active_freezes"] == 1
        assert status["requests_recorded"] == 2
        assert status["freezes_reported"] == 1

    def test_ended_windows_leave_get_status(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        """Caller-defined endpoints do not accumulate once their windows end."""
        for i in range(50):
            governor.record_request(Role.STUDENT, f"/courses/{i}")
        governor.report_frozen(Role.STUDENT, "/courses/0", duration_ms=1_000)
        assert governor.get_status()["tracked_windows"] == 50

        clock.advance(60_000)
        governor.record_request(Role.STUDENT, "/grades")
        status = governor.get_status()
        assert status["tracked_windows"] == 1
        assert status["active_freezes"] == 0
        assert governor.status(Role.STUDENT, "/courses/0").current == 0

    def test_purge_expired_counts_windows_and_freezes(
        self, governor: RequestGovernor, clock: FakeClock
    ) -> None:
        governor.record_request(Role.TEACHER)
        governor.report_frozen(Role.ADMIN, duration_ms=5_000)
        assert governor.purge_expired() == 0

        clock.advance(60_000)
        assert governor.purge_expired() == 2
