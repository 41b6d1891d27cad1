from deploystore.sync.coordinator import DocumentSource, LoadResult, SyncCoordinator, SyncState

__all__ = ["SyncCoordinator", "SyncState", "DocumentSource", "LoadResult"]
