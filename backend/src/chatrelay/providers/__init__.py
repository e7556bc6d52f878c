"""Upstream model provider adapters."""

from chatrelay.providers.base import (
    ProviderError,
    ProviderFamily,
    StreamingAdapter,
    classify_model,
    resolve_model_id,
)
from chatrelay.providers.registry import AdapterRegistry, ModelCompleter, build_registry

__all__ = [
    "AdapterRegistry",
    "ModelCompleter",
    "ProviderError",
    "ProviderFamily",
    "StreamingAdapter",
    "build_registry",
    "classify_model",
    "resolve_model_id",
]
