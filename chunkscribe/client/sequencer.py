"""Ordered delivery of audio chunks to the session server."""

import asyncio
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from ..models.audio import AudioChunk
from ..models.session import AppendResult

logger = logging.getLogger(__name__)

Deliver = Callable[[AudioChunk], Awaitable[AppendResult]]


@dataclass
class DeliveryOutcome:
    """How one enqueued chunk settled."""
    sequence_number: int
    accepted_index: Optional[int] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.error is None


class UploadSequencer:
    """Single-consumer FIFO that uploads chunks strictly one after another.

    Exactly one worker thread owns an asyncio event loop and awaits each
    delivery before taking the next chunk, so the server sees appends in
    enqueue order no matter how long individual uploads take. A failed
    delivery is logged and recorded; it is not retried. ``on_failure`` is
    called with each failed outcome, on the thread that recorded it.
    """

    def __init__(self,
                 deliver: Deliver,
                 max_pending: int = 64,
                 delivery_timeout: float = 30.0,
                 name: str = "upload",
                 on_failure: Optional[Callable[[DeliveryOutcome], None]] = None):
        self.deliver = deliver
        self.on_failure = on_failure
        self.max_pending = max_pending
        self.delivery_timeout = delivery_timeout
        self.name = name

        self.task_queue: "queue.Queue[AudioChunk]" = queue.Queue(maxsize=max_pending)
        self.outcomes: List[DeliveryOutcome] = []
        self._outcomes_lock = threading.Lock()
        self.cancel_event = threading.Event()
        self.shutdown_event = threading.Event()

        self.worker_thread = threading.Thread(target=self._worker_loop, daemon=True)
        self.worker_thread.name = f"worker_{name}"
        self.worker_thread.start()
        logger.info(f"Started {name} sequencer worker (max_pending={max_pending})")

    def _worker_loop(self):
        """Takes one chunk at a time and runs its delivery on this thread's loop."""
        thread_name = threading.current_thread().name
        logger.debug(f"Worker thread {thread_name} starting")

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            while not self.shutdown_event.is_set():
                try:
                    chunk = self.task_queue.get(timeout=0.1)
                except queue.Empty:
                    continue

                try:
                    if self.cancel_event.is_set():
                        self._record(DeliveryOutcome(chunk.sequence_number, error="cancelled"))
                    else:
                        loop.run_until_complete(self._deliver_one(chunk))
                except Exception as e:
                    logger.error(f"Unhandled exception delivering chunk {chunk.sequence_number}: {e}", exc_info=True)
                    self._record(DeliveryOutcome(chunk.sequence_number, error=type(e).__name__))
                finally:
                    self.task_queue.task_done()
        finally:
            loop.close()
            logger.debug(f"Worker thread {thread_name} exiting and closing its event loop.")

    async def _deliver_one(self, chunk: AudioChunk) -> None:
        start_time = time.time()
        try:
            result = await asyncio.wait_for(self.deliver(chunk), timeout=self.delivery_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Delivery of chunk {chunk.sequence_number} timed out after {self.delivery_timeout}s")
            self._record(DeliveryOutcome(chunk.sequence_number, error="timeout"))
            return
        except Exception as e:
            code = getattr(e, "code", type(e).__name__)
            logger.warning(f"Delivery of chunk {chunk.sequence_number} failed ({code}): {e}")
            self._record(DeliveryOutcome(chunk.sequence_number, error=code))
            return

        logger.debug(f"Chunk {chunk.sequence_number} accepted as part {result.index} "
                     f"in {time.time() - start_time:.3f}s")
        self._record(DeliveryOutcome(chunk.sequence_number, accepted_index=result.index))

    def _record(self, outcome: DeliveryOutcome) -> None:
        with self._outcomes_lock:
            self.outcomes.append(outcome)
        if not outcome.delivered and self.on_failure is not None:
            try:
                self.on_failure(outcome)
            except Exception as e:
                logger.error(f"Failure callback for chunk {outcome.sequence_number} raised: {e}", exc_info=True)

    def enqueue(self, chunk: AudioChunk) -> bool:
        """Queue a chunk for delivery; never blocks the caller.

        Returns False if the sequencer was cancelled or the queue is full.
        """
        if self.cancel_event.is_set() or self.shutdown_event.is_set():
            logger.warning(f"Chunk {chunk.sequence_number} refused: {self.name} sequencer is closed")
            return False
        try:
            self.task_queue.put_nowait(chunk)
        except queue.Full:
            logger.error(f"Upload queue full ({self.max_pending}), dropping chunk {chunk.sequence_number}")
            self._record(DeliveryOutcome(chunk.sequence_number, error="queue_full"))
            return False
        return True

    def drain(self, timeout: float = 120.0) -> bool:
        """Wait until every enqueued delivery settled; False on timeout."""
        logger.info(f"[{self.name}] Waiting up to {timeout}s for uploads to settle...")
        start_time = time.time()
        while time.time() - start_time < timeout:
            if self.task_queue.unfinished_tasks == 0:
                logger.info(f"[{self.name}] All uploads settled.")
                return True
            time.sleep(0.01)
        logger.warning(f"[{self.name}] {self.task_queue.unfinished_tasks} uploads still pending after {timeout}s")
        return False

    def cancel(self) -> int:
        """Abandon queued deliveries without waiting; returns how many were dropped."""
        self.cancel_event.set()
        dropped = 0
        while True:
            try:
                chunk = self.task_queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
            self._record(DeliveryOutcome(chunk.sequence_number, error="cancelled"))
            self.task_queue.task_done()
        logger.info(f"[{self.name}] Cancelled, dropped {dropped} queued uploads")
        return dropped

    def shutdown(self, wait: bool = True, timeout: float = 5.0) -> None:
        """Stop the worker after the current delivery."""
        if self.shutdown_event.is_set():
            return
        self.shutdown_event.set()
        if not wait:
            return
        self.worker_thread.join(timeout=timeout)
        if self.worker_thread.is_alive():
            logger.warning(f"[{self.name}] Worker did not stop within {timeout}s")

    @property
    def failed(self) -> List[DeliveryOutcome]:
        with self._outcomes_lock:
            return [o for o in self.outcomes if not o.delivered]

    @property
    def delivered(self) -> List[DeliveryOutcome]:
        with self._outcomes_lock:
            return [o for o in self.outcomes if o.delivered]
