from territory.platform.store.batching import ChunkedRead, chunked, fetch_in_chunks, in_chunks
from territory.platform.store.pagination import PagedRead, fetch_all_paged, read_all
from territory.platform.store.window import TimeWindow, as_utc, day_start

__all__ = [
    "ChunkedRead",
    "PagedRead",
    "TimeWindow",
    "as_utc",
    "chunked",
    "day_start",
    "fetch_all_paged",
    "fetch_in_chunks",
    "in_chunks",
    "read_all",
]
