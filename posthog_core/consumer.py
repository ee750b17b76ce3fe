import logging
from threading import Event, Lock, Thread
from typing import Optional

from posthog_core.event_queue import EventQueue
from posthog_core.transport import Transport


class Consumer(Thread):
    """Periodically drains the client's queue into the transport."""

    log = logging.getLogger("posthog_core")

    def __init__(
        self,
        queue: EventQueue,
        transport: Transport,
        flush_interval: float = 30,
        max_batch_size: int = 50,
    ):
        """Create a consumer thread."""
        Thread.__init__(self, name="posthog-core-consumer")
        # Make consumer a daemon thread so that it doesn't block program exit
        self.daemon = True
        self.queue = queue
        self.transport = transport
        self.flush_interval = flush_interval
        self.max_batch_size = max_batch_size
        # Set in the constructor so that a pause() issued before run() starts
        # is never undone.
        self._stopped = Event()
        self._flush_lock = Lock()

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    def run(self):
        """Runs the consumer."""
        self.log.debug("consumer is running...")
        while not self._stopped.wait(self.flush_interval):
            self.upload()

        self.log.debug("consumer exited.")

    def pause(self):
        """Stop the timer. No tick starts after this returns."""
        self._stopped.set()

    def upload(self, block: bool = False) -> bool:
        """
        Deliver what is queued right now, return whether all of it was delivered.

        Only one upload runs at a time. When another one is in flight a
        non-blocking call returns False straight away; it is not queued.
        """
        if not self._flush_lock.acquire(blocking=block):
            self.log.debug("flush already in progress, skipping")
            return False
        try:
            return self._upload_pending()
        finally:
            self._flush_lock.release()

    def _upload_pending(self) -> bool:
        # records captured while we upload wait for the next flush
        pending = len(self.queue)
        delivered = 0
        while delivered < pending:
            batch = self.next(min(self.max_batch_size, pending - delivered))
            if not batch:
                break
            if not self.request(batch):
                return False
            delivered += len(batch)

        if delivered:
            self.log.debug("successfully flushed %s items.", delivered)
        return True

    def next(self, limit: Optional[int] = None):
        """Return the next batch of items to upload."""
        return self.queue.take(limit or self.max_batch_size)

    def request(self, batch) -> bool:
        """Send `batch`, putting it back at the head of the queue if that fails."""
        result = self.transport.deliver_batch(batch)
        if not result.ok:
            self.log.debug(
                "requeueing %d events after failed delivery (%s)", len(batch), result
            )
            self.queue.requeue(batch)
        return result.ok
