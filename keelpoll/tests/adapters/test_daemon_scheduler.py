"""Tests for the DaemonScanScheduler loop."""

import asyncio
import logging

import pytest

from keelpoll.adapters.scheduler.daemon import (
    FAILURE_ALERT_THRESHOLD,
    DaemonFactory,
    DaemonScanScheduler,
)
from keelpoll.tests.fakes.scan import FakeScanPort

DAEMON_LOGGER = "keelpoll.adapters.scheduler.daemon"


@pytest.fixture
def scan_port() -> FakeScanPort:
    """Create a fake scan port."""
    return FakeScanPort()


async def stop_after(stop_event: asyncio.Event, delay: float) -> None:
    await asyncio.sleep(delay)
    stop_event.set()


# --- start() Tests ---


@pytest.mark.asyncio
async def test_start_requires_scan_port() -> None:
    scheduler = DaemonScanScheduler(scan_port=None)

    with pytest.raises(ValueError, match="scan_port"):
        await scheduler.start()


def test_interval_must_be_positive(scan_port: FakeScanPort) -> None:
    with pytest.raises(ValueError):
        DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0)


@pytest.mark.asyncio
async def test_initial_scan_runs_immediately(scan_port: FakeScanPort) -> None:
    """The first scan does not wait for the interval."""
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=60)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.05),
    )

    assert scan_port.scan_count == 1
    assert scheduler.scan_count == 1
    assert scheduler.last_result is not None
    assert not scheduler.running


@pytest.mark.asyncio
async def test_scans_repeat_on_interval(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.02)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.15),
    )

    assert scan_port.scan_count >= 3


@pytest.mark.asyncio
async def test_stop_is_observed_without_waiting_for_tick(
    scan_port: FakeScanPort,
) -> None:
    """A long interval does not delay shutdown."""
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=3600)
    stop_event = asyncio.Event()

    await asyncio.wait_for(
        asyncio.gather(scheduler.start(stop_event), stop_after(stop_event, 0.01)),
        timeout=2,
    )

    assert not scheduler.running
    assert scan_port.scan_count == 1


@pytest.mark.asyncio
async def test_no_scan_starts_after_stop(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.01)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.05),
    )
    count_at_stop = scan_port.scan_count
    await asyncio.sleep(0.05)

    assert scan_port.scan_count == count_at_stop


@pytest.mark.asyncio
async def test_stop_method_ends_loop(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=10)

    async def stop_soon() -> None:
        await asyncio.sleep(0.01)
        await scheduler.stop()

    await asyncio.wait_for(
        asyncio.gather(scheduler.start(), stop_soon()),
        timeout=2,
    )

    assert not scheduler.running


@pytest.mark.asyncio
async def test_task_cancellation_returns_cleanly(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=10)

    task = asyncio.create_task(scheduler.start())
    await asyncio.sleep(0.01)
    task.cancel()
    await asyncio.wait_for(task, timeout=2)

    assert not scheduler.running


@pytest.mark.asyncio
async def test_stop_event_is_passed_to_scans(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=60)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.01),
    )

    assert scan_port.stop_events == [stop_event]


# --- Failure handling Tests ---


@pytest.mark.asyncio
async def test_failed_scan_does_not_stop_loop(scan_port: FakeScanPort) -> None:
    scan_port.fail_on_calls = {1, 2}
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.02)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.15),
    )

    assert scan_port.scan_count >= 3
    assert scheduler.scan_count >= 1
    assert scheduler.consecutive_failures == 0
    assert scheduler.last_error is None


@pytest.mark.asyncio
async def test_consecutive_failures_are_tracked(scan_port: FakeScanPort) -> None:
    scan_port.set_should_fail(True, "apiserver unreachable")
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.01)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.1),
    )

    assert scheduler.consecutive_failures == scan_port.scan_count
    assert scheduler.last_error == "apiserver unreachable"
    assert scheduler.last_result is None


@pytest.mark.asyncio
async def test_failed_scan_is_logged_with_error(
    scan_port: FakeScanPort, caplog: pytest.LogCaptureFixture
) -> None:
    scan_port.fail_on_calls = {1}
    scan_port.fail_message = "apiserver unreachable"
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.02)
    stop_event = asyncio.Event()

    with caplog.at_level(logging.ERROR, logger=DAEMON_LOGGER):
        await asyncio.gather(
            scheduler.start(stop_event),
            stop_after(stop_event, 0.05),
        )

    failures = [
        r
        for r in caplog.records
        if r.name == DAEMON_LOGGER and r.levelno == logging.ERROR
    ]
    assert len(failures) == 1
    assert "Scan #1 failed" in failures[0].getMessage()
    assert "apiserver unreachable" in failures[0].getMessage()
    assert failures[0].exc_info is not None


@pytest.mark.asyncio
async def test_persistent_failure_escalates_to_critical(
    scan_port: FakeScanPort, caplog: pytest.LogCaptureFixture
) -> None:
    scan_port.set_should_fail(True, "apiserver unreachable")
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=60)

    with caplog.at_level(logging.ERROR, logger=DAEMON_LOGGER):
        for _ in range(FAILURE_ALERT_THRESHOLD):
            with pytest.raises(Exception, match="apiserver unreachable"):
                await scheduler.trigger_scan()

    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert len(critical) == 1
    assert f"failed {FAILURE_ALERT_THRESHOLD} consecutive times" in critical[0].getMessage()


@pytest.mark.asyncio
async def test_initial_failure_is_fatal_when_requested(
    scan_port: FakeScanPort,
) -> None:
    scan_port.set_should_fail(True, "cannot list namespaces")
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=10)

    with pytest.raises(RuntimeError, match="cannot list namespaces"):
        await scheduler.start(fail_on_initial_error=True)

    assert not scheduler.running
    assert scan_port.scan_count == 1


@pytest.mark.asyncio
async def test_scan_timeout_counts_as_failure(scan_port: FakeScanPort) -> None:
    scan_port.delay_seconds = 1.0
    scheduler = DaemonScanScheduler(
        scan_port=scan_port,
        scan_interval_seconds=10,
        scan_timeout_seconds=0.01,
    )
    stop_event = asyncio.Event()

    await asyncio.wait_for(
        asyncio.gather(scheduler.start(stop_event), stop_after(stop_event, 0.1)),
        timeout=2,
    )

    assert scheduler.consecutive_failures == 1
    assert scheduler.last_error == "TimeoutError"


# --- Overlap Tests ---


@pytest.mark.asyncio
async def test_slow_scans_never_overlap(scan_port: FakeScanPort) -> None:
    """Ticks missed during a slow scan are skipped, not run concurrently."""
    scan_port.delay_seconds = 0.05
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=0.01)
    stop_event = asyncio.Event()

    await asyncio.gather(
        scheduler.start(stop_event),
        stop_after(stop_event, 0.2),
    )

    assert scan_port.max_active_scans == 1
    # far fewer scans than the 20 ticks that elapsed
    assert scan_port.scan_count <= 5


@pytest.mark.asyncio
async def test_manual_scan_is_rejected_while_scanning(
    scan_port: FakeScanPort,
) -> None:
    scan_port.gate = asyncio.Event()
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=60)
    stop_event = asyncio.Event()

    loop_task = asyncio.create_task(scheduler.start(stop_event))
    await asyncio.sleep(0.01)

    assert scheduler.is_scanning
    assert await scheduler.trigger_scan() is None
    assert scan_port.scan_count == 1

    scan_port.gate.set()
    stop_event.set()
    await asyncio.wait_for(loop_task, timeout=2)
    assert scan_port.max_active_scans == 1


@pytest.mark.asyncio
async def test_manual_scan_runs_when_idle(scan_port: FakeScanPort) -> None:
    scheduler = DaemonScanScheduler(scan_port=scan_port, scan_interval_seconds=60)

    result = await scheduler.trigger_scan()

    assert result is not None
    assert scan_port.scan_count == 1
    assert scheduler.status()["scan_count"] == 1


@pytest.mark.asyncio
async def test_manual_scan_failure_propagates(scan_port: FakeScanPort) -> None:
    scan_port.set_should_fail(True)
    scheduler = DaemonScanScheduler(scan_port=scan_port)

    with pytest.raises(RuntimeError):
        await scheduler.trigger_scan()

    assert scheduler.consecutive_failures == 1


# --- Factory Tests ---


@pytest.mark.asyncio
async def test_run_single_scan(scan_port: FakeScanPort) -> None:
    result = await DaemonFactory.run_single_scan(scan_port)

    assert scan_port.scan_count == 1
    assert result.watches_dispatched == 0


@pytest.mark.asyncio
async def test_run_single_scan_reraises(scan_port: FakeScanPort) -> None:
    scan_port.set_should_fail(True)

    with pytest.raises(RuntimeError):
        await DaemonFactory.run_single_scan(scan_port)


def test_factory_create(scan_port: FakeScanPort) -> None:
    scheduler = DaemonFactory.create(
        scan_port, scan_interval_seconds=30, scan_timeout_seconds=5
    )

    assert scheduler.scan_port is scan_port
    assert scheduler.scan_interval_seconds == 30
    assert scheduler.scan_timeout_seconds == 5
