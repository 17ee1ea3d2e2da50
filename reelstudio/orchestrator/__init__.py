"""Run driver, backend-call dispatcher and structured run log.

The driver module is resolved on first attribute access so that running
``python -m reelstudio.orchestrator.pipeline`` does not find it already
imported.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reelstudio.orchestrator.dispatcher import Dispatcher, DispatchPolicy, Priority
    from reelstudio.orchestrator.pipeline import (
        OrchestrationResult,
        Orchestrator,
        PipelineAbortError,
        PipelineConfig,
        PipelineState,
    )

_PIPELINE_EXPORTS = (
    "OrchestrationResult",
    "Orchestrator",
    "PipelineAbortError",
    "PipelineConfig",
    "PipelineState",
)
_DISPATCHER_EXPORTS = ("Dispatcher", "DispatchPolicy", "Priority")

__all__ = [*_PIPELINE_EXPORTS, *_DISPATCHER_EXPORTS]


def __getattr__(name: str):
    if name in _PIPELINE_EXPORTS:
        from reelstudio.orchestrator import pipeline

        return getattr(pipeline, name)
    if name in _DISPATCHER_EXPORTS:
        from reelstudio.orchestrator import dispatcher

        return getattr(dispatcher, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
