"""Generative backends: the abstract capability and its Vertex AI implementation."""

from reelstudio.backend.auth import AuthToken, TokenCache
from reelstudio.backend.base import GenerativeBackend, Tool
from reelstudio.backend.vertex import VertexBackend

__all__ = [
    "AuthToken",
    "TokenCache",
    "GenerativeBackend",
    "Tool",
    "VertexBackend",
]
