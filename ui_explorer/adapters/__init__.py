"""Backend adapters (database, payments, AI service) selected by name at runtime."""

from typing import Dict

from .base import Adapter, AdapterFactory, AdapterRegistry
from .groq import GroqAdapter
from .stripe import StripeAdapter
from .supabase import SupabaseAdapter

ADAPTER_TYPES: Dict[str, AdapterFactory] = {
    "supabase": SupabaseAdapter,
    "stripe": StripeAdapter,
    "groq": GroqAdapter,
}


def default_registry() -> AdapterRegistry:
    return AdapterRegistry(ADAPTER_TYPES)


__all__ = [
    "ADAPTER_TYPES",
    "Adapter",
    "AdapterFactory",
    "AdapterRegistry",
    "GroqAdapter",
    "StripeAdapter",
    "SupabaseAdapter",
    "default_registry",
]
