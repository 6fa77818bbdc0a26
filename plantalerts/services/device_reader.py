"""Device reader collaborators for the poller.

The poller only depends on the ``DeviceReader`` protocol. Wire protocol
details live behind the tag gateway; this module ships an HTTP client for
that gateway and a simulator for local runs.
"""
import logging
import random
from typing import Protocol

import httpx

from plantalerts.core.exceptions import DeviceUnavailableError
from plantalerts.schemas.sample import Sample, TagRule

logger = logging.getLogger(__name__)


class DeviceReader(Protocol):
    async def connect(self) -> None: ...

    async def read(self, tag_ids: list[str]) -> list[Sample]: ...

    async def close(self) -> None: ...


class HttpDeviceReader:
    """Reads tag values from a tag gateway over HTTP.

    Gateway contract:
      GET  /health                  -> 2xx when the device session is up
      POST /read {"tags": [...]}    -> [{"tagId": ..., "value": ..., "statusGood": ...}]
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)
        try:
            resp = await client.get("/health")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            await client.aclose()
            raise DeviceUnavailableError(f"Tag gateway {self.base_url} unavailable: {e}") from e
        except BaseException:
            # cancelled mid-handshake
            await client.aclose()
            raise
        self._client = client
        logger.info("Connected to tag gateway %s", self.base_url)

    async def read(self, tag_ids: list[str]) -> list[Sample]:
        if self._client is None:
            raise DeviceUnavailableError("Not connected")
        try:
            resp = await self._client.post("/read", json={"tags": tag_ids})
        except httpx.TransportError as e:
            raise DeviceUnavailableError(f"Tag gateway connection lost: {e}") from e
        resp.raise_for_status()
        return [Sample.model_validate(item) for item in resp.json()]

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()


def _nominal(rule: TagRule) -> float:
    if rule.warn_low is not None and rule.warn_high is not None:
        return (rule.warn_low + rule.warn_high) / 2
    if rule.warn_high is not None:
        return rule.warn_high * 0.6
    if rule.warn_low is not None:
        return rule.warn_low * 1.5
    return 0.0


class SimulatedDeviceReader:
    """Random-walk values around each tag's nominal point with rare excursions."""

    def __init__(
        self,
        rules: dict[str, TagRule],
        seed: int | None = None,
        excursion_rate: float = 0.002,
        bad_status_rate: float = 0.001,
    ):
        self._rules = rules
        self._random = random.Random(seed)
        self.excursion_rate = excursion_rate
        self.bad_status_rate = bad_status_rate
        self._values: dict[str, float] = {}
        self.connected = False

    async def connect(self) -> None:
        self._values = {tag_id: _nominal(rule) for tag_id, rule in self._rules.items()}
        self.connected = True

    async def read(self, tag_ids: list[str]) -> list[Sample]:
        if not self.connected:
            raise DeviceUnavailableError("Simulator not connected")
        samples = []
        for tag_id in tag_ids:
            rule = self._rules.get(tag_id)
            if rule is None:
                samples.append(Sample(tag_id=tag_id, value=None, status_good=False))
                continue
            nominal = _nominal(rule)
            spread = abs(nominal) * 0.01 or 1.0
            value = self._values.get(tag_id, nominal) + self._random.gauss(0, spread)
            # drift back towards nominal
            value += (nominal - value) * 0.1
            self._values[tag_id] = value
            if self._random.random() < self.excursion_rate:
                limit = rule.critical_high if rule.critical_high is not None else rule.critical_low
                if limit is not None:
                    value = limit * (1.05 if limit == rule.critical_high else 0.95)
            samples.append(Sample(
                tag_id=tag_id,
                value=round(value, 3),
                status_good=self._random.random() >= self.bad_status_rate,
            ))
        return samples

    async def close(self) -> None:
        self.connected = False


def build_device_reader(kind: str, rules: dict[str, TagRule], gateway_url: str) -> DeviceReader:
    if kind == "http":
        return HttpDeviceReader(gateway_url)
    if kind == "simulated":
        return SimulatedDeviceReader(rules)
    raise ValueError(f"Unknown device reader {kind!r}")
