"""Engine-specific strategies for the image backend."""

from .base import EngineStrategy
from .containerd import ContainerdEngine
from .moby import MobyEngine

__all__ = ["ContainerdEngine", "EngineStrategy", "MobyEngine"]
