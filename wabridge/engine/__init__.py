"""Reasoning engine subprocess orchestration."""

from wabridge.engine.runner import (
    EngineError,
    EngineProcessError,
    EngineRequest,
    EngineResponse,
    EngineRunner,
    EngineStartError,
    EngineTimeout,
)

__all__ = [
    "EngineError",
    "EngineProcessError",
    "EngineRequest",
    "EngineResponse",
    "EngineRunner",
    "EngineStartError",
    "EngineTimeout",
]
