from abc import ABC, abstractmethod
import hashlib


class IHashPort(ABC):
    @abstractmethod
    def sha256(self, data: bytes) -> bytes:
        pass


class NativeHashAdapter(IHashPort):
    def sha256(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()
