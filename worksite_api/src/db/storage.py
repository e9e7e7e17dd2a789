from __future__ import annotations

from typing import Any, List, Optional

from src.db.instrumentation import Instrumentation


class InstrumentedBucket:
    """
    One storage bucket; uploads, downloads and removals are timed as
    `storage.<op>.<bucket>`. Other bucket methods such as `get_public_url`
    go to the upstream bucket untimed.
    """

    def __init__(self, bucket: str, bucket_api: Any, instrumentation: Instrumentation) -> None:
        self.bucket = bucket
        self._api = bucket_api
        self._instrumentation = instrumentation

    async def upload(self, path: str, file: Any, file_options: Optional[dict] = None) -> Any:
        return await self._instrumentation.track_call(
            f"storage.upload.{self.bucket}",
            lambda: self._api.upload(path, file, file_options),
            op="storage",
        )

    async def download(self, path: str, *args: Any, **kwargs: Any) -> Any:
        return await self._instrumentation.track_call(
            f"storage.download.{self.bucket}",
            lambda: self._api.download(path, *args, **kwargs),
            op="storage",
        )

    async def remove(self, paths: List[str]) -> Any:
        return await self._instrumentation.track_call(
            f"storage.remove.{self.bucket}",
            lambda: self._api.remove(paths),
            op="storage",
        )

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._api, name)


class StorageTracker:
    """Instrumented view of the upstream storage client. Nothing is cached."""

    def __init__(self, storage: Any, instrumentation: Instrumentation) -> None:
        self._storage = storage
        self._instrumentation = instrumentation

    def from_(self, bucket: str) -> InstrumentedBucket:
        return InstrumentedBucket(bucket, self._storage.from_(bucket), self._instrumentation)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._storage, name)
