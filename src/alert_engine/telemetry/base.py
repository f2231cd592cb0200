from abc import ABC, abstractmethod
from datetime import datetime

from alert_engine.schema.telemetry_schema import AggregateResult, QueryDescriptor


class TelemetryClient(ABC):
    """
    Windowed query interface to the telemetry backend.
    The descriptor is opaque to the engine; only the numbers in the result are interpreted.
    """

    @abstractmethod
    async def query(self, window_start: datetime, window_end: datetime, descriptor: QueryDescriptor) -> AggregateResult:
        """
        Raises:
            TelemetryQueryError: query failed or returned an unusable answer
        """
        ...

    async def close(self) -> None:
        return None
