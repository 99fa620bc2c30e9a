from __future__ import annotations

import threading

from supabase import Client, create_client

from src.infrastructure.config import Settings

# Reusable client per (url, key); the storage adapter is built per request
_CLIENTS: dict[tuple[str, str], Client] = {}
# Sync handlers run in a threadpool, so first requests can race
_CLIENTS_LOCK = threading.Lock()


def get_supabase_client(settings: Settings) -> Client | None:
    if not settings.storage_enabled:
        return None
    cache_key = (settings.supabase_url or "", settings.supabase_key or "")
    with _CLIENTS_LOCK:
        client = _CLIENTS.get(cache_key)
        if client is None:
            client = create_client(*cache_key)
            _CLIENTS[cache_key] = client
    return client
