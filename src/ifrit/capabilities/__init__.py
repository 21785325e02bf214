"""Capability execution layer: registry, eligibility, retry/fallback, diagnostics.

``CapabilityEngine`` lives in :mod:`ifrit.capabilities.engine`; it depends on
:mod:`ifrit.providers`, which itself builds on the types exported here.
"""

from ifrit.capabilities.base import (
    DEFAULT_CAPABILITIES,
    Capability,
    CapabilityError,
    CapabilityHandler,
    ExecuteRequest,
    ExecuteResult,
    HandlerSource,
    Usage,
)
from ifrit.capabilities.diagnostics import DiagnosticsLog, DiagnosticsRecord, ProviderStats
from ifrit.capabilities.eligibility import resolve_handlers
from ifrit.capabilities.executor import CapabilityExecutor, get_capability_executor
from ifrit.capabilities.registry import HandlerRegistry
from ifrit.capabilities.settings import CapabilitiesConfig, CapabilitySetting, ExecutorConfig
from ifrit.capabilities.validation import ResultValidator, ValidationRule

__all__ = [
    "Capability",
    "CapabilitiesConfig",
    "CapabilityError",
    "CapabilityExecutor",
    "CapabilityHandler",
    "CapabilitySetting",
    "DEFAULT_CAPABILITIES",
    "DiagnosticsLog",
    "DiagnosticsRecord",
    "ExecuteRequest",
    "ExecuteResult",
    "ExecutorConfig",
    "HandlerRegistry",
    "HandlerSource",
    "ProviderStats",
    "ResultValidator",
    "Usage",
    "ValidationRule",
    "get_capability_executor",
    "resolve_handlers",
]
