"""Best-effort mirroring of accepted feedback to a tenant's external sink.

Each mirror call runs as a tracked background task. The outcome is logged
and never reaches the customer's response.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp


logger = logging.getLogger(__name__)

MIRROR_CONTENT_TYPE = "text/plain;charset=utf-8"
DEFAULT_MIRROR_TIMEOUT_SEC = 10


class FeedbackMirror:
    def __init__(self, *, timeout_sec: int = DEFAULT_MIRROR_TIMEOUT_SEC) -> None:
        self.timeout_sec = timeout_sec
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, sink_url: str, payload: dict[str, Any]) -> asyncio.Task | None:
        if not sink_url:
            return None
        task = asyncio.create_task(self.send(sink_url, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send(self, sink_url: str, payload: dict[str, Any]) -> bool:
        """POST the payload; True on a 2xx answer."""
        body = json.dumps(payload, ensure_ascii=False)
        slug = payload.get("business_slug", "?")
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    sink_url,
                    data=body.encode("utf-8"),
                    headers={"Content-Type": MIRROR_CONTENT_TYPE},
                ) as resp:
                    if 200 <= resp.status < 300:
                        logger.info("Feedback mirrored for %s (status=%s)", slug, resp.status)
                        return True
                    logger.warning("Feedback mirror for %s rejected: status %s", slug, resp.status)
                    return False
        except asyncio.TimeoutError:
            logger.warning("Feedback mirror for %s timed out after %ss", slug, self.timeout_sec)
            return False
        except aiohttp.ClientError as exc:
            logger.warning("Feedback mirror for %s failed: %s", slug, exc)
            return False

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight mirror tasks (used at shutdown and in tests)."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %s unfinished feedback mirror task(s)", len(pending))
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Feedback mirror task crashed", exc_info=task.exception())
