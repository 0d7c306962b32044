from abc import ABC, abstractmethod
import time
import uuid


class IClockPort(ABC):
    @abstractmethod
    def now(self) -> int:
        """Current unix time in whole seconds; never decreases."""
        pass


class IIdPort(ABC):
    @abstractmethod
    def generate_id(self) -> str:
        pass


class SystemClockAdapter(IClockPort):
    def now(self) -> int:
        return int(time.time())


class UuidIdAdapter(IIdPort):
    def generate_id(self) -> str:
        return str(uuid.uuid4())
