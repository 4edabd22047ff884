import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.domain.checkout.service import CheckoutSessionOrchestrator
from app.infra.db import get_session_factory
from app.infra.logging import configure_logging
from app.infra.metrics import configure_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = ("checkout-sweep",)


async def run_checkout_sweep(session) -> dict[str, int]:
    orchestrator = CheckoutSessionOrchestrator(app_settings=settings)
    result = await orchestrator.sweep(session)
    return asdict(result)


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, int]]],
) -> dict[str, int]:
    async with session_factory() as session:
        result = await runner(session)
    logger.info("job_complete", extra={"extra": {"job": name, **result}})
    return result


def _job_runner(name: str) -> Callable:
    if name == "checkout-sweep":
        return run_checkout_sweep
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None, session_factory: async_sessionmaker | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument("--interval", type=int, default=60, help="Seconds between loops when not using --once")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging()
    configure_metrics(settings.metrics_enabled)
    session_factory = session_factory or get_session_factory()

    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name) for name in job_names]

    while True:
        for name, runner in zip(job_names, runners):
            try:
                await _run_job(name, session_factory, runner)
            except Exception as exc:  # noqa: BLE001
                logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
        if args.once:
            break
        await asyncio.sleep(max(args.interval, 1))


if __name__ == "__main__":
    asyncio.run(main())
