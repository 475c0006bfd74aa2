"""Descriptor loading from YAML and Markdown front matter files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError

from cronwatch.config import DESCRIPTOR_SUFFIXES
from cronwatch.errors import DescriptorParseError, DirectoryReadError
from cronwatch.metrics import SchedulerMetrics
from cronwatch.models import Task

logger = logging.getLogger(__name__)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"]) or "descriptor"
        parts.append(f"{field}: {item['msg']}")
    return "; ".join(parts)


class DescriptorLoader:
    """Reads every task descriptor below a directory."""

    def __init__(
        self,
        directory: Path | str,
        metrics: SchedulerMetrics | None = None,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.metrics = metrics

    def discover(self) -> list[Path]:
        """List descriptor files, walking subdirectories."""
        if not self.directory.is_dir():
            raise DirectoryReadError(f"Task directory not found: {self.directory}")

        def _raise(error: OSError) -> None:
            raise DirectoryReadError(f"Cannot read {error.filename}: {error.strerror}") from error

        files = []
        for root, dirs, names in os.walk(self.directory, onerror=_raise):
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            for name in sorted(names):
                if name.startswith("."):
                    continue
                if Path(name).suffix.lower() in DESCRIPTOR_SUFFIXES:
                    files.append(Path(root) / name)

        return files

    def load_file(self, path: Path) -> Task:
        """Parse one descriptor file into a Task."""
        metadata = self._read_metadata(path)

        if not isinstance(metadata, dict):
            raise DescriptorParseError(path, "descriptor is not a mapping")

        try:
            return Task.model_validate({**metadata, "source": path})
        except ValidationError as e:
            raise DescriptorParseError(path, _describe(e)) from e

    def _read_metadata(self, path: Path) -> Any:
        try:
            if path.suffix.lower() == ".md":
                return frontmatter.load(path).metadata
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise DescriptorParseError(path, str(e)) from e

    @staticmethod
    def _has_front_matter(path: Path) -> bool:
        """Markdown files without front matter are plain documents."""
        if path.suffix.lower() != ".md":
            return True
        try:
            return frontmatter.check(str(path))
        except (OSError, UnicodeDecodeError):
            # let load_file report it
            return True

    def load(self) -> list[Task]:
        """Load all valid tasks; invalid files are logged and counted."""
        tasks = []

        for path in self.discover():
            if not self._has_front_matter(path):
                logger.debug(f"Ignoring {path}: no front matter")
                continue
            try:
                tasks.append(self.load_file(path))
            except DescriptorParseError as e:
                logger.error(f"Skipping descriptor {e}")
                if self.metrics:
                    self.metrics.descriptor_failed(path.name)

        return tasks
