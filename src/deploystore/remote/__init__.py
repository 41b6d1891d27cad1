"""Remote layer: request pipeline, platform endpoints and the document store."""

from deploystore.remote.pipeline import RequestPipeline
from deploystore.remote.platform import BatchResult, PlatformClient
from deploystore.remote.store import PublishReceipt, PublishTarget, RemoteStore

__all__ = [
    "RequestPipeline",
    "PlatformClient",
    "BatchResult",
    "RemoteStore",
    "PublishReceipt",
    "PublishTarget",
]
