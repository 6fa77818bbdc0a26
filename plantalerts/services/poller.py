"""Fixed-cadence polling loop feeding device samples to the alert publisher."""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

from plantalerts.core.exceptions import DeviceUnavailableError, PublishError
from plantalerts.services.device_reader import DeviceReader
from plantalerts.services.publisher import AlertPublisher

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    POLLING = "polling"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class Poller:
    def __init__(
        self,
        reader: DeviceReader,
        publisher: AlertPublisher,
        tag_ids: list[str],
        interval: float = 0.2,
        read_timeout: float = 2.0,
        reconnect_delay: float = 5.0,
    ):
        self.reader = reader
        self.publisher = publisher
        self.tag_ids = tag_ids
        self.interval = interval
        self.read_timeout = read_timeout
        self.reconnect_delay = reconnect_delay

        self.state = PollerState.DISCONNECTED
        self.cycles = 0
        self.published = 0
        self.skipped = 0
        self.last_cycle_at: datetime | None = None
        self.last_error: str | None = None
        self._session_open = False

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "cycles": self.cycles,
            "published": self.published,
            "skipped": self.skipped,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_error": self.last_error,
        }

    async def run(self, stop: asyncio.Event | None = None):
        """Polls until cancelled or ``stop`` is set. The device session is always released."""
        stop = stop or asyncio.Event()
        logger.info("Poller started: %d tags every %.3fs", len(self.tag_ids), self.interval)
        try:
            while not stop.is_set():
                if not await self._connect():
                    await self._sleep(stop, self.reconnect_delay)
                    continue
                await self._poll(stop)
        except asyncio.CancelledError:
            logger.info("Poller cancelled")
            raise
        finally:
            await self._release()
            self.state = PollerState.STOPPED
            logger.info("Poller stopped")

    async def _connect(self) -> bool:
        self.state = PollerState.CONNECTING
        try:
            await self.reader.connect()
        except Exception as e:
            self.state = PollerState.DISCONNECTED
            self.last_error = str(e)
            logger.warning("Device connect failed, retrying in %.1fs: %s", self.reconnect_delay, e)
            return False
        self._session_open = True
        self.state = PollerState.POLLING
        logger.info("Device session established")
        return True

    async def _poll(self, stop: asyncio.Event):
        loop = asyncio.get_running_loop()
        while not stop.is_set():
            started = loop.time()
            if await self._cycle():
                await self._release()
                self.state = PollerState.DISCONNECTED
                await self._sleep(stop, self.reconnect_delay)
                return

            elapsed = loop.time() - started
            if elapsed > self.interval:
                logger.warning("Poll cycle took %.3fs, over the %.3fs interval; poller is lagging", elapsed, self.interval)
                await asyncio.sleep(0)
            else:
                await self._sleep(stop, self.interval - elapsed)

    async def _cycle(self) -> bool:
        """Runs one read + publish cycle. Returns True when the device session was lost."""
        self.cycles += 1
        try:
            samples = await asyncio.wait_for(self.reader.read(self.tag_ids), timeout=self.read_timeout)
        except DeviceUnavailableError as e:
            self.last_error = str(e)
            logger.warning("Device session lost: %s", e)
            return True
        except asyncio.TimeoutError:
            self.state = PollerState.BACKOFF
            self.last_error = f"read timed out after {self.read_timeout}s"
            logger.warning("Device read timed out, skipping cycle")
            return False
        except Exception as e:
            self.state = PollerState.BACKOFF
            self.last_error = str(e)
            logger.warning("Device read failed, skipping cycle: %s", e)
            return False

        self.state = PollerState.POLLING
        self.last_cycle_at = datetime.now(timezone.utc)
        for sample in samples:
            if not sample.status_good:
                continue
            try:
                notification = await self.publisher.publish(sample)
            except PublishError as e:
                self.skipped += 1
                self.last_error = str(e)
                logger.warning("Skipping sample %s: %s", sample.tag_id, e)
                continue
            except Exception as e:
                self.skipped += 1
                self.last_error = str(e) or type(e).__name__
                logger.warning("Publishing sample %s failed, skipping it", sample.tag_id, exc_info=True)
                continue
            if notification is not None:
                self.published += 1
        return False

    async def _release(self):
        if not self._session_open:
            return
        self._session_open = False
        try:
            await self.reader.close()
        except Exception:
            logger.warning("Closing the device session failed", exc_info=True)

    @staticmethod
    async def _sleep(stop: asyncio.Event, delay: float):
        try:
            await asyncio.wait_for(stop.wait(), timeout=max(delay, 0))
        except asyncio.TimeoutError:
            pass
