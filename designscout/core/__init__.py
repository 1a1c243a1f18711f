"""Core package for design-scout"""

from .config import ScoutConfig, load_config
from .progressive_search import ProgressiveSearchEngine
from .route_executor import RouteExecutor

__all__ = ["ScoutConfig", "load_config", "ProgressiveSearchEngine", "RouteExecutor"]
