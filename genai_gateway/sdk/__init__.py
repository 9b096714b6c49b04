"""
SDK for the generation gateway.

Provides the client for the external generation provider.
"""

from .openai_client import ProviderClient, ProviderResult

__all__ = ["ProviderClient", "ProviderResult"]
