"""
Scheduled publishing.

A schedule entry asks for a record to be published at a point in time:

    {"at": 1735689600000, "publish": "http://example.com/_pages/home"}

It is stored twice, in one batch: at <prefix>/_schedule/<id>, and as a
back-pointer at <target>@scheduled so editors can see what is pending for a
page. A background loop scans every site's schedule, publishes what is due,
and removes the entry.

Invariants:
    - Only one loop per process (start() is a no-op when already running)
    - A bad entry or a failed publish is logged and never stops the scan
    - An entry is removed only after its publish succeeded

How to change safely:
    - "at" is Unix milliseconds; keep it that way, entries are persisted
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, ValidationError, field_validator

from ..compose.addressing import (
    SCHEDULE,
    get_prefix,
    get_type,
    is_url,
    url_to_uri,
    with_version,
)
from ..errors import ClientError
from ..records.service import new_uid
from ..storage.base import BatchOp, ListOptions, StorageEngine

logger = logging.getLogger(__name__)

SCHEDULED = "scheduled"

Publisher = Callable[[str], Awaitable[Any]]


class ScheduleEntry(BaseModel):
    """A pending publish.

    Attributes:
        at: Unix time in milliseconds
        publish: Url of the record to publish
    """

    model_config = ConfigDict(extra="allow")

    at: Union[StrictInt, StrictFloat]
    publish: str

    @field_validator("publish")
    @classmethod
    def publish_must_be_url(cls, value: str) -> str:
        if not is_url(value):
            raise ValueError("publish must be an absolute url")
        return value

    @property
    def target(self) -> str:
        """Address of the record to publish."""
        return url_to_uri(self.publish)

    @classmethod
    def parse(cls, data: Any) -> ScheduleEntry:
        """Validate caller data.

        Raises:
            ClientError: If "at" or "publish" is missing or malformed
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            failed = {error["loc"][0] for error in e.errors() if error["loc"]}
            if "at" in failed or not isinstance(data, dict):
                raise ClientError('Missing "at" property as number.') from None
            raise ClientError('Missing "publish" property as valid url.') from None


class Scheduler:
    """Background publisher for due schedule entries.

    Example:
        >>> scheduler = Scheduler(storage, sites, {PAGES: pages.publish})
        >>> await scheduler.schedule("example.com/_schedule", {"at": ts, "publish": url})
        >>> await scheduler.start()
    """

    def __init__(
        self,
        storage: StorageEngine,
        sites: Any,
        publishers: Mapping[str, Publisher],
        interval_seconds: float = 50.0,
        jitter_seconds: float = 10.0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Storage engine
            sites: Sites to scan (iterable of Site)
            publishers: Address type -> coroutine publishing one address
            interval_seconds: Base delay between scans
            jitter_seconds: Upper bound of random delay added once, so
                processes started together do not scan in lockstep
        """
        self.storage = storage
        self.sites = sites
        self.publishers = dict(publishers)
        self.delay_seconds = interval_seconds + random.uniform(0, jitter_seconds)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._published = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return self._running

    async def schedule(self, address: str, data: dict) -> dict:
        """Store a schedule entry and its back-pointer.

        Args:
            address: Any address under the site, usually <prefix>/_schedule
            data: Entry with "at" and "publish"

        Returns:
            The entry with "_ref" set to its new address
        """
        entry = ScheduleEntry.parse(data)
        prefix = get_prefix(address) if "/_" in address else address.rstrip("/")
        reference = f"{prefix}/{SCHEDULE}/{new_uid()}"
        target = with_version(entry.target, SCHEDULED)
        referenced = {"_ref": reference, **data}

        await self.storage.batch([BatchOp.put(reference, data), BatchOp.put(target, referenced)])
        logger.info(
            f"scheduled {entry.target} ({entry.at})",
            extra={"address": reference, "target": entry.target},
        )
        return referenced

    async def unschedule(self, address: str) -> dict:
        """Remove an entry and its back-pointer; return the entry.

        Raises:
            NotFoundError: If no entry is stored at address
        """
        data = json.loads(await self.storage.get(address))
        target = with_version(url_to_uri(data["publish"]), SCHEDULED)
        await self.storage.batch([BatchOp.delete(address), BatchOp.delete(target)])
        return data

    async def _publish_target(self, target: str) -> Any:
        publisher = self.publishers.get(get_type(target) or "")
        if publisher is None:
            raise ClientError(f"Cannot publish {target}: no publisher for its type")
        return await publisher(target)

    async def _publish_entry(self, key: str, entry: dict) -> bool:
        target = url_to_uri(entry["publish"])
        try:
            await self._publish_target(target)
            await self.unschedule(key)
        except Exception as e:
            self._failed += 1
            logger.error(
                f"failed to publish {target}: {e}",
                extra={"address": key, "target": target},
                exc_info=True,
            )
            return False

        self._published += 1
        logger.info(f"published scheduled {target}", extra={"address": key})
        return True

    async def due_entries(self, prefix: str, now_ms: float) -> list[tuple[str, dict]]:
        """Parsable entries under prefix with "at" before now_ms."""
        due = []
        async for item in self.storage.list(ListOptions(prefix=f"{prefix}/{SCHEDULE}/")):
            try:
                value = json.loads(item["value"])
            except (TypeError, ValueError):
                logger.error(f"Cannot parse JSON of {item['value']}", extra={"address": item["key"]})
                continue
            at = value.get("at") if isinstance(value, dict) else None
            if isinstance(at, (int, float)) and at < now_ms:
                due.append((item["key"], value))
        return due

    async def run_once(self, now_ms: Optional[float] = None) -> int:
        """Publish every due entry across all sites.

        Returns:
            Number of entries published
        """
        now_ms = now_ms if now_ms is not None else time.time() * 1000
        published = 0

        for site in list(self.sites):
            try:
                due = await self.due_entries(site.prefix, now_ms)
                results = await asyncio.gather(
                    *(self._publish_entry(key, entry) for key, entry in due)
                )
                published += sum(results)
            except Exception as e:
                logger.error(f"failed to publish: {e}", extra={"site": site.slug}, exc_info=True)

        return published

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Starting scheduler", extra={"delay_seconds": round(self.delay_seconds, 1)})

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.delay_seconds)
                if not self._running:
                    break
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the background loop."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Stopping scheduler")

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "published": self._published,
            "failed": self._failed,
            "delay_seconds": self.delay_seconds,
        }
