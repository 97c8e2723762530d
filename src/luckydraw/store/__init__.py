"""Store backends for the lucky draw service."""

from datetime import timedelta
from typing import Any, Dict

from luckydraw.store.base import DrawStore
from luckydraw.store.memory import MemoryStore
from luckydraw.store.supabase import SupabaseStore

__all__ = ["DrawStore", "MemoryStore", "SupabaseStore", "create_store"]


def create_store(config: Dict[str, Any]) -> DrawStore:
    """Build the store selected by `store.backend`."""
    store_cfg = config.get("store", {})
    cycle_length = timedelta(days=int(config.get("draw", {}).get("cycle_length_days", 15)))
    backend = str(store_cfg.get("backend", "memory")).lower()

    if backend == "memory":
        return MemoryStore(cycle_length=cycle_length)
    if backend == "supabase":
        return SupabaseStore(
            store_cfg.get("supabase_url", ""),
            store_cfg.get("supabase_key", ""),
            timeout=float(store_cfg.get("timeout", 10)),
            cycle_length=cycle_length,
        )
    raise ValueError(f"Unknown store backend: {backend}")
