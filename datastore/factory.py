from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Union

from datastore.memory_store import InMemoryReadingStore
from datastore.supabase_store import SupabaseReadingStore
from settings import get_settings

ReadingStore = Union[InMemoryReadingStore, SupabaseReadingStore]


@lru_cache
def build_default_store() -> ReadingStore:
    settings = get_settings()
    if settings.store_backend == "supabase":
        if not settings.store_url or not settings.store_key:
            raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY")
        return SupabaseReadingStore(
            base_url=settings.store_url,
            api_key=settings.store_key,
            table=settings.store_table,
        )

    path = settings.store_persistence_path
    return InMemoryReadingStore(
        name=settings.store_table,
        persistence_path=Path(path) if path else None,
    )
