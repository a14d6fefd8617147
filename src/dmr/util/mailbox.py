import asyncio
import logging
import threading
from collections import defaultdict, deque
from typing import Any, AsyncIterator, DefaultDict, Iterator

from dmr.model.device_message import DeviceMessage
from dmr.model.mailbox_policy import DEFAULT_MAILBOX_MAXSIZE, MailboxPolicyModel

logger = logging.getLogger("Mailbox")


def _wake(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


class Mailbox:
    """
    Bounded per-device queue between the MQTT observer and a driver.

    One writer (the MQTT network thread) and one reader (driver code).
    - offer never blocks: a full mailbox drops the incoming message
    - queued messages are never evicted
    - close() wakes the reader; it drains what is left, then sees end-of-stream

    Async readers park on a future of their own event loop; offer() resolves
    it with call_soon_threadsafe, so a waiting reader holds no thread and a
    cancelled reader leaves the queue untouched.
    """

    def __init__(self, device: str, maxsize: int = DEFAULT_MAILBOX_MAXSIZE) -> None:
        if maxsize < 1:
            raise ValueError(f"mailbox size must be >= 1, got {maxsize}")
        self.device = device
        self.maxsize = maxsize
        self._queue: deque[DeviceMessage] = deque()
        self._cond = threading.Condition()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self._closed = False
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        return self._dropped

    def qsize(self) -> int:
        with self._cond:
            return len(self._queue)

    def offer(self, message: DeviceMessage) -> bool:
        with self._cond:
            if self._closed:
                return False
            if len(self._queue) >= self.maxsize:
                self._dropped += 1
                return False
            self._queue.append(message)
            self._cond.notify()
            self._wake_async_readers()
            return True

    def _wake_async_readers(self) -> None:
        # caller holds self._cond
        waiters, self._waiters = self._waiters, []
        for loop, waiter in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_wake, waiter)

    def get_nowait(self) -> DeviceMessage | None:
        with self._cond:
            return self._queue.popleft() if self._queue else None

    def get(self, timeout: float | None = None) -> DeviceMessage | None:
        """
        Wait for the next message.

        Returns None on timeout, or once the mailbox is closed and drained.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._closed, timeout=timeout):
                return None
            if self._queue:
                return self._queue.popleft()
            return None

    async def receive(self, timeout: float | None = None) -> DeviceMessage | None:
        """Async get(): suspends the calling task, never a thread."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            with self._cond:
                if self._queue:
                    return self._queue.popleft()
                if self._closed:
                    return None
                entry = (loop, loop.create_future())
                self._waiters.append(entry)

            try:
                if deadline is None:
                    await entry[1]
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return None
                    await asyncio.wait_for(entry[1], remaining)
            except asyncio.TimeoutError:
                return None
            finally:
                with self._cond:
                    if entry in self._waiters:
                        self._waiters.remove(entry)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            self._wake_async_readers()

    def __iter__(self) -> Iterator[DeviceMessage]:
        while True:
            message = self.get()
            if message is None:
                return
            yield message

    async def __aiter__(self) -> AsyncIterator[DeviceMessage]:
        while True:
            message = await self.receive()
            if message is None:
                return
            yield message


class MailboxRegistry:
    """Owns one Mailbox per device; mailboxes are created on first subscribe."""

    def __init__(self, policy: MailboxPolicyModel | None = None) -> None:
        self._policy = policy or MailboxPolicyModel()
        self._mailboxes: dict[str, Mailbox] = {}
        self._dropped: DefaultDict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    @property
    def policy(self) -> MailboxPolicyModel:
        return self._policy

    def get_or_create(self, device: str) -> Mailbox:
        with self._lock:
            mailbox = self._mailboxes.get(device)
            if mailbox is None or mailbox.closed:
                mailbox = Mailbox(device, self._policy.queue_maxsize)
                self._mailboxes[device] = mailbox
            return mailbox

    def get(self, device: str) -> Mailbox | None:
        return self._mailboxes.get(device)

    def devices(self) -> list[str]:
        return list(self._mailboxes)

    def offer(self, device: str, message: DeviceMessage) -> bool:
        mailbox = self._mailboxes.get(device)
        if mailbox is None:
            self._dropped[device] += 1
            logger.warning(f"[Mailbox] No mailbox for device={device}, drop {message.kind} message")
            return False
        if not mailbox.offer(message):
            self._dropped[device] += 1
            logger.error(
                f"[Mailbox] Mailbox of device={device} is full or closed "
                f"(size={mailbox.maxsize}), drop {message.kind} message"
            )
            return False
        return True

    def get_dropped_count(self, device: str) -> int:
        return int(self._dropped.get(device, 0))

    def get_queue_stats(self, device: str) -> dict[str, Any]:
        mailbox = self._mailboxes.get(device)
        return {
            "max_queue_size": self._policy.queue_maxsize,
            "current_queue_size": mailbox.qsize() if mailbox else 0,
            "closed": mailbox.closed if mailbox else True,
            "total_dropped": self.get_dropped_count(device),
        }

    def close_all(self) -> None:
        with self._lock:
            for mailbox in self._mailboxes.values():
                mailbox.close()
        logger.info(f"[Mailbox] Closed {len(self._mailboxes)} mailboxes")
