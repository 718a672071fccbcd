"""
auth/worker.py -- Background consumer for RegistrationCompleted events.

For every event the worker:
  1. Removes any earlier confirmation token of that user (at most one live
     token per account).
  2. Creates a ConfirmAccount expiring confirm_ttl_seconds from now.
  3. Sends the confirmation email.

Runs as an asyncio task started in the app lifespan. Store calls and mail
delivery are blocking, so they run through asyncio.to_thread(). A failure on
one event is logged and the loop moves on; the registration it belongs to has
already succeeded and is never rolled back.
"""

from __future__ import annotations

import asyncio
import logging

from auth.confirmation import ConfirmAccountStore
from auth.events import EventQueue, RegistrationCompleted
from auth.mailer import Mailer
from auth.models import ConfirmAccount

logger = logging.getLogger("authorization.worker")


class ConfirmationWorker:
    def __init__(
        self,
        events: EventQueue,
        confirmations: ConfirmAccountStore,
        mailer: Mailer,
        confirm_ttl_seconds: int,
    ) -> None:
        self._events = events
        self._confirmations = confirmations
        self._mailer = mailer
        self._ttl = confirm_ttl_seconds

    async def handle(self, event: RegistrationCompleted) -> ConfirmAccount:
        await asyncio.to_thread(self._confirmations.delete_for_user, event.user_id)
        record = await asyncio.to_thread(self._confirmations.create, event.user_id, self._ttl)
        await asyncio.to_thread(self._mailer.send_confirmation, event.email, event.first_name, record.token)
        return record

    async def run(self) -> None:
        """Consume events until cancelled.

        CancelledError from task.cancel() during shutdown propagates out of
        the queue wait and unwinds the coroutine.
        """
        logger.info("Confirmation worker started")
        while True:
            event = await self._events.next()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Confirmation setup failed for user_id=%s", event.user_id)
            finally:
                self._events.task_done()
