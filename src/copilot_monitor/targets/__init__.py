"""Watch-target models and loader exports."""

from .loader import TargetLoadError, TargetLoader, load_targets
from .models import WatchTarget, WatchTargets

__all__ = [
    "TargetLoadError",
    "TargetLoader",
    "WatchTarget",
    "WatchTargets",
    "load_targets",
]
