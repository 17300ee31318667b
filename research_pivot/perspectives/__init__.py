from .engine import PerspectiveEngine

__all__ = ["PerspectiveEngine"]
