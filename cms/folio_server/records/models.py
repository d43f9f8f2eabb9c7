"""
Hook execution with time budgets.

Runs a record type's save and render hooks, enforces the shape of what they
return, and applies the per-operation time budget:

    read budget  = TIMEOUT_CONSTANT_MS x TIMEOUT_GET_COEFFICIENT
    write budget = TIMEOUT_CONSTANT_MS x TIMEOUT_PUT_COEFFICIENT

Budgets are advisory. A hook that overruns is shielded, not cancelled: the
caller gets OperationTimeoutError while the hook runs to completion in the
background. Anything past half the budget is logged as slow.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Mapping
from typing import Any, Optional

from ..config import TimeoutConfig
from ..errors import ClientError, DefectError, OperationTimeoutError
from ..storage.base import BatchOp, StorageEngine
from .context import RequestContext
from .hooks import Hook, TypeHooks

logger = logging.getLogger(__name__)


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def invoke(hook: Hook, *args: Any) -> Any:
    """Call a hook that may be a plain function or a coroutine function."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _log_orphan(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Timed-out operation failed after its caller gave up",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )


async def run_with_budget(work: Awaitable[Any], limit_ms: int, message: str) -> Any:
    """Await work for at most limit_ms without cancelling it.

    Raises:
        OperationTimeoutError: If work is still running at the deadline
    """
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=limit_ms / 1000.0)
    except asyncio.TimeoutError:
        task.add_done_callback(_log_orphan)
        raise OperationTimeoutError(message, limit_ms=limit_ms) from None


async def run_save(
    hook: Hook,
    address: str,
    data: dict,
    context: Optional[RequestContext],
    timeouts: TimeoutConfig,
) -> list[BatchOp]:
    """Run a save hook and turn its result into batch operations.

    A mapping becomes one put at address; a list of BatchOp is taken as-is.

    Raises:
        DefectError: If the hook returns anything else
        OperationTimeoutError: If the hook exceeds the write budget
    """
    start = time.monotonic()
    limit_ms = timeouts.put_budget_ms

    result = await run_with_budget(
        invoke(hook, address, data, context),
        limit_ms,
        f"Module PUT exceeded {limit_ms}ms: {address}",
    )

    if isinstance(result, Mapping):
        ops = [BatchOp.put(address, dict(result))]
    elif isinstance(result, list) and all(isinstance(op, BatchOp) for op in result):
        ops = list(result)
    else:
        raise DefectError(
            f"Unable to save {address}: Data from model.save must be an object!",
            details={"address": address, "type": type(result).__name__},
        )

    ms = elapsed_ms(start)
    if ms > limit_ms * 0.5:
        logger.warning(f"slow put {address} {ms}ms", extra={"address": address, "ms": ms})

    return ops


async def _fetch_json(storage: StorageEngine, address: str) -> Any:
    return json.loads(await storage.get(address))


async def run_get(
    storage: StorageEngine,
    hooks: Optional[TypeHooks],
    address: str,
    context: Optional[RequestContext],
    timeouts: TimeoutConfig,
) -> dict:
    """Read a record: raw fetch, then render hook, then per-format renderer.

    Raises:
        NotFoundError: If nothing is stored at address
        DefectError: If the render hook returns a non-mapping
        ClientError: If the final result is not a mapping
        OperationTimeoutError: If render exceeds the read budget
    """
    context = context or RequestContext()
    execute_render = hooks is not None and hooks.render is not None and context.call_hooks

    if execute_render:
        start = time.monotonic()
        limit_ms = timeouts.get_budget_ms

        async def fetch_and_render() -> Any:
            raw = await _fetch_json(storage, address)
            return await invoke(hooks.render, address, raw, context)

        data = await run_with_budget(
            fetch_and_render(),
            limit_ms,
            f"Model GET exceeded {limit_ms}ms: {address}",
        )

        if not isinstance(data, Mapping):
            raise DefectError(
                f"Component model must return object, not {type(data).__name__}: {address}",
                details={"address": address},
            )

        ms = elapsed_ms(start)
        if ms > limit_ms * 0.5:
            logger.warning(f"slow get {address} {ms}ms", extra={"address": address, "ms": ms})
    else:
        data = await _fetch_json(storage, address)

    renderer = hooks.renderer_for(context.extension) if hooks is not None else None
    if renderer is not None:
        data = await invoke(renderer, address, data, context)

    if not isinstance(data, Mapping):
        raise ClientError(
            f"Invalid data type for component at {address} of {type(data).__name__}",
            details={"address": address},
        )

    return dict(data)
