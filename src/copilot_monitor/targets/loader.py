"""Watch-target loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import WatchTarget, WatchTargets


class TargetLoadError(RuntimeError):
    """Raised when one or more target files cannot be parsed."""


class TargetLoader:
    """Loads watch targets from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, WatchTarget]:
        """Load targets from all configured search paths.

        Later search paths override earlier ones when target ids collide.
        """

        if not self._search_paths:
            return {}

        targets: dict[str, WatchTarget] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue
                if isinstance(document, dict):
                    document.setdefault("id", path.stem)

                try:
                    target = WatchTarget.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Target validation error in {path}: {exc}")
                    continue

                targets[target.id] = target

        if errors:
            raise TargetLoadError("; ".join(errors))

        return targets


def load_targets(search_paths: Iterable[Path] | None = None) -> WatchTargets:
    """Load and merge every target file found in ``search_paths``."""

    return WatchTargets.combine(TargetLoader(search_paths).load_all().values())


__all__ = ["TargetLoadError", "TargetLoader", "load_targets"]
