"""
settlement_kernel.services.notification_dispatcher -- Post-commit notice delivery.

Responsibility:
    Accepts notices produced by committed transitions, resolves recipients
    (a single identity or every holder of a role) and writes one
    notification row per recipient.  Delivery runs on a background worker
    thread, or inline when configured.  Subscribers get each delivered
    record pushed to them.

Architecture position:
    Kernel > Services.  Called by the lifecycle services strictly after
    their transaction has committed and after entity locks are released.

Invariants enforced:
    - ``enqueue`` never raises into the caller.
    - Role fan-out is resolved against the role index at delivery time.
    - A delivery failure never rolls back, retries or otherwise touches the
      transition that produced the notice.

Failure modes:
    - Delivery and subscriber errors are logged (``notification_delivery_failed``,
      ``notification_subscriber_failed``) and swallowed.
"""

from __future__ import annotations

import itertools
import queue
import threading
import time
from collections.abc import Callable, Iterable
from uuid import UUID

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.notification import Notice, NotificationRecord
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.notification import NotificationModel
from settlement_kernel.services._transaction import SessionFactory, transaction
from settlement_kernel.services.party_directory import PartyDirectory

logger = get_logger("services.notification_dispatcher")

Subscriber = Callable[[NotificationRecord], None]

_STOP = object()


class NotificationDispatcher:
    """Delivers notices to the notification feed."""

    def __init__(
        self,
        session_factory: SessionFactory,
        directory: PartyDirectory,
        clock: Clock | None = None,
        async_delivery: bool = True,
        queue_size: int = 1000,
    ) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock or SystemClock()
        self._async = async_delivery
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._sequence = itertools.count(time.time_ns())
        self._sequence_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    # -- lifecycle ------------------------------------------------------

    def start(self) -> None:
        """Start the background worker (no-op in inline mode or if running)."""
        if not self._async or self.is_running:
            return
        self._worker = threading.Thread(
            target=self._run,
            name="notification-dispatcher",
            daemon=True,
        )
        self._worker.start()
        logger.info("notification_dispatcher_started")

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Deliver everything pending, then stop the worker.

        If the worker is still busy when ``timeout`` expires it is left
        running and nothing is drained here; call ``stop()`` again later.
        """
        if not self.is_running:
            self.drain()
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning(
                "notification_dispatcher_stop_timeout",
                extra={"timeout": timeout, "pending": self._queue.qsize()},
            )
            return
        self._worker = None
        self.drain()
        logger.info("notification_dispatcher_stopped")

    # -- producer side --------------------------------------------------

    def enqueue(self, notices: Iterable[Notice]) -> None:
        """Hand notices over for delivery.  Never raises."""
        try:
            pending = list(notices)
        except Exception:
            logger.warning("notification_enqueue_failed", exc_info=True)
            return

        for notice in pending:
            if not self._async:
                self._deliver(notice)
                continue
            try:
                self._queue.put_nowait(notice)
            except queue.Full:
                logger.warning(
                    "notification_queue_full",
                    extra={"title": notice.title, "queue_size": self._queue.maxsize},
                )
                self._deliver(notice)

    def drain(self) -> None:
        """Block until every enqueued notice has been delivered."""
        if self.is_running:
            self._queue.join()
            return
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                if item is not _STOP:
                    self._deliver(item)
            finally:
                self._queue.task_done()

    # -- push feed ------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for delivered records; returns an unsubscribe function."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # -- delivery -------------------------------------------------------

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            return next(self._sequence)

    def _resolve(self, notice: Notice, session) -> tuple[UUID, ...]:
        if notice.recipient.is_fan_out:
            return self._directory.members_of(notice.recipient.role, session=session)
        return (notice.recipient.party_id,)

    def _deliver(self, notice: Notice) -> None:
        try:
            with transaction(self._session_factory, "Notification") as session:
                recipients = self._resolve(notice, session)
                now = self._clock.now()
                models = [
                    NotificationModel(
                        recipient_id=recipient_id,
                        title=notice.title,
                        message=notice.message,
                        category=notice.category.value,
                        bill_id=notice.bill_id,
                        created_at=now,
                        sequence=self._next_sequence(),
                        read=False,
                    )
                    for recipient_id in recipients
                ]
                session.add_all(models)
                session.flush()
                records = [m.to_dto() for m in models]
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                exc_info=True,
                extra={
                    "title": notice.title,
                    "bill_id": str(notice.bill_id) if notice.bill_id else None,
                },
            )
            return

        if not records:
            logger.debug(
                "notification_no_recipients",
                extra={"role": notice.recipient.role.value if notice.recipient.role else None},
            )
        for record in records:
            logger.debug(
                "notification_delivered",
                extra={"notification_id": str(record.id), "recipient_id": str(record.recipient_id)},
            )
            self._publish(record)

    def _publish(self, record: NotificationRecord) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(record)
            except Exception:
                logger.warning(
                    "notification_subscriber_failed",
                    exc_info=True,
                    extra={"notification_id": str(record.id)},
                )
