import asyncio
from typing import Awaitable, Callable

import httpx
from loguru import logger

from moolre.client import MoolreClient
from moolre.errors import MoolreError
from moolre.models import IdKind, TransferOutcome

ResultCallback = Callable[[TransferOutcome], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class StatusPoller:
    """
    Schedules delayed status re-checks.

    Each scheduled check is an asyncio task keyed by transfer, so that a
    transfer replaced by a newer one can have its pending check cancelled.
    The poller never builds outcomes itself: it hands whatever the gateway
    returned to the callbacks it was given.
    """

    def __init__(self, client: MoolreClient, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> list[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    def schedule(
        self,
        key: str,
        delay: float,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        transaction_id: str | None = None,
        external_reference: str | None = None,
    ) -> asyncio.Task:
        """
        Check the status of a transfer once, after ``delay`` seconds.

        :param key: The transfer the check belongs to
        :param delay: Seconds to wait before checking
        :param on_result: Receives the fresh outcome
        :param on_error: Receives the error if the check fails
        :param transaction_id: Preferred lookup id
        :param external_reference: Used only when no transaction id is known

        :return: The scheduled task
        """
        if transaction_id:
            identifier, id_kind = transaction_id, IdKind.TRANSACTION_ID
        elif external_reference:
            identifier, id_kind = external_reference, IdKind.EXTERNAL_REFERENCE
        else:
            raise ValueError("A transaction id or external reference is required to poll")

        if self._tasks.get(key) is not asyncio.current_task():
            self.cancel(key)
        logger.info(f"Scheduling status check for {key} in {delay}s ({id_kind.value} id {identifier})")
        task = asyncio.get_running_loop().create_task(
            self._run(delay, identifier, id_kind, on_result, on_error)
        )
        self._tasks[key] = task
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return task

    async def _run(
        self,
        delay: float,
        identifier: str,
        id_kind: IdKind,
        on_result: ResultCallback,
        on_error: ErrorCallback,
    ):
        await self._sleep(delay)
        try:
            outcome = await self.client.check_status(identifier, id_kind)
        except (MoolreError, httpx.HTTPError) as exc:
            logger.error(f"Status check for {identifier} failed: {exc}")
            await on_error(exc)
            return
        await on_result(outcome)

    def _forget(self, key: str, task: asyncio.Task):
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        logger.info(f"Cancelling pending status check for {key}")
        task.cancel()
        return True

    def cancel_all(self):
        for key in list(self._tasks):
            self.cancel(key)
