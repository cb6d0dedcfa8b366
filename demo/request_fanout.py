#!/usr/bin/env -S uv run

# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "typer",
#     "loguru",
#     "quantalogic-tasklocal",
# ]
# ///

import asyncio
import os
import random
import sys
import uuid

import typer
from loguru import logger

from quantalogic_tasklocal import InheritableLocal, NotSet, create_task

REQUEST_ID = InheritableLocal('request_id')
TENANT = InheritableLocal('tenant')

logger.remove()
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logger.add(sys.stderr, level=log_level, format="{time:HH:mm:ss.SSS} | {level} | {message}")

app = typer.Typer()


def log(message: str, *args) -> None:
    """Log with whatever request context the current task can see."""
    request_id = REQUEST_ID.get("-")
    tenant = TENANT.get("-")
    logger.bind(request_id=request_id, tenant=tenant).info(
        "[{}/{}] " + message, tenant, request_id, *args
    )


async def fetch_shard(shard: int, spawn) -> int:
    await asyncio.sleep(random.uniform(0, 0.05))
    log("fetched shard {}", shard)
    if shard == 0:
        # Second level: the shard fans out again.
        await spawn(audit(shard))
    return shard * 10


async def audit(shard: int) -> None:
    await asyncio.sleep(0)
    log("audited shard {}", shard)


async def handle_request(fanout: int, inherit: bool) -> int:
    def spawn(coro):
        return create_task(coro) if inherit else asyncio.create_task(coro)

    log("handling request with fanout {}", fanout)
    results = await asyncio.gather(*(spawn(fetch_shard(i, spawn)) for i in range(fanout)))
    log("request done: {}", sum(results))
    return sum(results)


async def serve(requests: int, fanout: int, inherit: bool) -> None:
    jobs = []
    for n in range(requests):
        request_id = uuid.uuid4().hex[:8]
        tenant = f"tenant-{n % 2}"
        jobs.append(REQUEST_ID.scope(request_id, TENANT.scope(tenant, handle_request(fanout, inherit))))
    await asyncio.gather(*jobs)


@app.command()
def run(
    requests: int = typer.Option(3, "--requests", "-r", help="Number of concurrent requests"),
    fanout: int = typer.Option(3, "--fanout", "-f", help="Child tasks spawned per request"),
    no_inherit: bool = typer.Option(False, "--no-inherit", help="Spawn children without inheriting context"),
):
    """Simulate concurrent requests whose child tasks log the parent's request id."""
    asyncio.run(serve(requests, fanout, not no_inherit))


@app.command()
def check():
    """Show what a child task sees with and without inheritance."""

    async def child():
        try:
            return REQUEST_ID.get()
        except NotSet as e:
            return f"NotSet ({e.reason.value})"

    async def parent():
        inherited = await create_task(child())
        plain = await asyncio.create_task(child())
        return inherited, plain

    inherited, plain = asyncio.run(REQUEST_ID.scope("req-5", parent()))
    typer.echo(f"wrapped child sees:   {inherited}")
    typer.echo(f"unwrapped child sees: {plain}")


if __name__ == "__main__":
    app()
