#!/usr/bin/env python3
"""Drive a request governor on a simulated clock and print observed status.

Each step issues one governed request, then refreshes an observer and
prints one JSON line: step outcome, user-facing message, banner copy,
observed status and live notifications.

Usage:
    python scripts/simulate_governor.py --role anonymous --requests 40 --interval-ms 500
    python scripts/simulate_governor.py --config configs/governor.yaml --rate-limit-at 5,6

Outcomes:
    sent          request recorded and completed
    rate_limited  request recorded, backend answered 429, key frozen
    timed_out     no slot opened within --max-wait-ms, nothing recorded
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import IO, Any

import orjson

from quotagate.config import QuotagateConfig, load_config
from quotagate.governor import GovernedCaller, RateLimitSignal, RequestGovernor, WaitTimedOutError
from quotagate.logging_config import setup_logging
from quotagate.observer import GovernorObserver, NotificationFeed, banner_text, messages

logger = logging.getLogger(__name__)

# 2024-01-01T00:00:00Z, so output is reproducible
DEFAULT_START_MS = 1_704_067_200_000


class SimulatedClock:
    """Millisecond clock advanced only by sleep()."""

    def __init__(self, start_ms: int = DEFAULT_START_MS) -> None:
        self.now_ms = start_ms

    def time_ms(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.now_ms += int(round(seconds * 1000))
        await asyncio.sleep(0)


async def simulate(
    config: QuotagateConfig,
    *,
    role: str,
    endpoint: str | None,
    requests: int,
    interval_ms: int,
    max_wait_ms: int,
    rate_limit_at: frozenset[int] = frozenset(),
    clock: SimulatedClock | None = None,
) -> list[dict[str, Any]]:
    """
    Run the scenario and collect one record per step.

    Args:
        config: Loaded configuration.
        role: Role to issue requests as.
        endpoint: Endpoint bucket (None = default bucket).
        requests: Number of steps.
        interval_ms: Simulated time between steps.
        max_wait_ms: Wait bound per request.
        rate_limit_at: Step indexes at which the simulated backend answers 429.
        clock: Clock to use (default: fresh SimulatedClock).

    Returns:
        Step records, in order.
    """
    clock = clock or SimulatedClock()
    governor = RequestGovernor.from_config(
        config.governor, _time_fn=clock.time_ms, _sleep_fn=clock.sleep
    )
    feed = NotificationFeed(config=config.notifications, _time_fn=clock.time_ms)
    observer = GovernorObserver(
        governor, role, endpoint, config=config.observer, feed=feed, _time_fn=clock.time_ms
    )
    caller = GovernedCaller(governor, config.governor.freeze_policy)

    records: list[dict[str, Any]] = []
    for step in range(requests):

        async def backend(step: int = step) -> str:
            if step in rate_limit_at:
                raise RateLimitSignal(f"simulated 429 at step {step}")
            return "ok"

        try:
            await caller.call(role, backend, endpoint=endpoint, max_wait_ms=max_wait_ms)
            outcome = "sent"
        except RateLimitSignal:
            outcome = "rate_limited"
        except WaitTimedOutError:
            outcome = "timed_out"

        observed = observer.refresh()
        message: str | None = None
        if outcome == "rate_limited":
            message = messages.frozen_message(observed.time_until_unfreeze_s)
        elif outcome == "timed_out":
            message = messages.WAIT_TIMED_OUT
        records.append(
            {
                "step": step,
                "ts_ms": clock.now_ms,
                "outcome": outcome,
                "message": message,
                "banner": list(banner_text(observed)),
                "status": observed.model_dump(mode="json"),
                "notifications": [
                    {"type": n.type.value, "message": n.message} for n in feed.live()
                ],
            }
        )
        await clock.sleep(interval_ms / 1000)

    logger.info(
        "Simulation finished",
        extra={
            "steps": requests,
            "requests_recorded": governor.metrics.requests_recorded,
            "waits_timed_out": governor.metrics.waits_timed_out,
            "freezes_reported": governor.metrics.freezes_reported,
        },
    )
    return records


def _parse_steps(value: str) -> frozenset[int]:
    if not value:
        return frozenset()
    try:
        return frozenset(int(v) for v in value.split(",") if v.strip())
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid step list: {value!r}") from e


def write_records(records: list[dict[str, Any]], out: IO[bytes]) -> None:
    """Write records as JSON lines."""
    for record in records:
        out.write(orjson.dumps(record) + b"\n")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Simulate a request governor on a virtual clock.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: built-in defaults)",
    )
    parser.add_argument(
        "--role",
        type=str,
        default="anonymous",
        help="Role to issue requests as (default: anonymous)",
    )
    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help="Endpoint bucket (default: shared bucket)",
    )
    parser.add_argument(
        "--requests",
        type=int,
        default=40,
        help="Number of requests to issue (default: 40)",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=1000,
        help="Simulated time between requests (default: 1000)",
    )
    parser.add_argument(
        "--max-wait-ms",
        type=int,
        default=5000,
        help="Wait bound per request (default: 5000)",
    )
    parser.add_argument(
        "--rate-limit-at",
        type=_parse_steps,
        default=frozenset(),
        help="Comma-separated step indexes answered with 429 (e.g. 5,6)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output JSONL file (default: stdout)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.requests < 0 or args.interval_ms < 0:
        parser.error("--requests and --interval-ms must be >= 0")

    try:
        config = load_config(args.config) if args.config else QuotagateConfig()
    except (FileNotFoundError, ValueError) as e:
        logger.error("Invalid config: %s", e)
        return 2

    records = asyncio.run(
        simulate(
            config,
            role=args.role,
            endpoint=args.endpoint,
            requests=args.requests,
            interval_ms=args.interval_ms,
            max_wait_ms=args.max_wait_ms,
            rate_limit_at=args.rate_limit_at,
        )
    )

    if args.output:
        with open(args.output, "wb") as f:
            write_records(records, f)
    else:
        write_records(records, sys.stdout.buffer)
        sys.stdout.flush()

    return 0


if __name__ == "__main__":
    sys.exit(main())
