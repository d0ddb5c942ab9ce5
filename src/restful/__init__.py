"""Restful Resource Engine - Declarative reconciler for REST APIs."""

__version__ = "0.1.0"

from .cli import app  # noqa: E402
from .config import EngineConfig  # noqa: E402
from .provider import Provider  # noqa: E402

__all__ = ["app", "EngineConfig", "Provider", "__version__"]
