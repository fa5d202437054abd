"""
Extraction providers.

A provider turns reduced text/HTML into a raw JSON-shaped model response.
Vendor differences live in small request/response translation functions;
one ChatCompletionProvider serves every vendor.
"""

from .base import Capability, ExtractionProvider, ExtractionRequest, ProviderStatus
from .registry import ProviderRegistry, build_registry

__all__ = [
    'Capability',
    'ExtractionProvider',
    'ExtractionRequest',
    'ProviderStatus',
    'ProviderRegistry',
    'build_registry',
]
