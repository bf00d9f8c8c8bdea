"""Device health-store capability consumed by the sync and write-back engines.

Concrete implementations wrap the platform health store; tests use in-memory
fakes.  Readings are returned raw (float millisecond times, platform sleep
codes) and normalized by ``healthsync.client.normalize``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Sequence, Union

from healthsync.models.write_intents import WriteIntent

ApplyStatus = Literal["applied", "failed", "skipped"]


@dataclass(frozen=True)
class QuantityReading:
    """One numeric reading from the device store.

    Attributes:
        uuid:             Device-assigned sample identifier.
        start_ms:         Start time in epoch ms (may be non-finite on bad data).
        end_ms:           End time in epoch ms.
        quantity:         Measured value in ``unit``.
        unit:             Unit string as reported by the device.
        source_name:      Recording app or device name.
        source_bundle_id: Recording app bundle identifier.
    """

    uuid: str
    start_ms: float
    end_ms: float
    quantity: float
    unit: str
    source_name: str | None = None
    source_bundle_id: str | None = None


@dataclass(frozen=True)
class CategoryReading:
    """One sleep-analysis reading; ``value`` is the platform category code."""

    uuid: str
    start_ms: float
    end_ms: float
    value: int
    source_name: str | None = None
    source_bundle_id: str | None = None


Reading = Union[QuantityReading, CategoryReading]


@dataclass(frozen=True)
class ApplyResult:
    status: ApplyStatus
    healthkit_uuid: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class DeviceSampleSource(ABC):
    """Abstract device health store."""

    def is_supported(self) -> bool:
        """Whether health sync can run on this platform at all."""
        return True

    @abstractmethod
    async def is_available(self) -> bool: ...

    @abstractmethod
    async def request_read_permissions(self) -> bool: ...

    @abstractmethod
    async def request_write_permissions(self) -> bool: ...

    @abstractmethod
    def timezone(self) -> str:
        """IANA timezone the device is currently in."""

    @abstractmethod
    async def fetch_samples(self, metric: str, from_ms: int, to_ms: int, timezone: str) -> Sequence[Reading]:
        """Readings of ``metric`` whose start falls in ``[from_ms, to_ms]``.

        ``timezone`` is the zone the caller will stamp on the samples; stores
        that bucket by local day use it to pick the query boundaries.

        ``sleep_segment`` returns ``CategoryReading`` values, every other
        metric ``QuantityReading`` values.
        """

    @abstractmethod
    async def apply_write(self, intent: WriteIntent) -> ApplyResult:
        """Write one queued intent into the device store."""
