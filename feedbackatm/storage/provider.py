from typing import BinaryIO, Optional


class StorageProvider:
    """Photo storage keyed by public paths of the form /uploads/<name>."""

    def save(self, data: bytes | BinaryIO, filename: str) -> str:
        raise NotImplementedError

    def read(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
