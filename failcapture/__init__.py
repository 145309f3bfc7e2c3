"""Failure-artifact capture: retention buffer, redaction and run bundles."""

from __future__ import annotations

__all__ = [
    "ClipOptions",
    "FailureArtifactBuffer",
    "FailureArtifactsOptions",
    "RedactionContext",
    "RedactionResult",
    "find_incomplete_bundles",
    "load_options",
]


def __getattr__(name: str):
    if name == "FailureArtifactBuffer":
        from .capture.artifacts import FailureArtifactBuffer

        return FailureArtifactBuffer
    if name in {"ClipOptions", "FailureArtifactsOptions", "load_options"}:
        from .capture import options

        return getattr(options, name)
    if name in {"RedactionContext", "RedactionResult"}:
        from .capture import redaction

        return getattr(redaction, name)
    if name == "find_incomplete_bundles":
        from .capture.persist import find_incomplete_bundles

        return find_incomplete_bundles
    raise AttributeError(name)
