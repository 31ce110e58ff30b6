"""Engine registry - loads and serves engine definitions from YAML files."""

import logging
from pathlib import Path
from typing import Optional

import yaml

from video_analyzer.engines.schemas import EngineDefinition, EngineSummary
from video_analyzer.subjects import FormatType

logger = logging.getLogger(__name__)


class EngineRegistry:
    """Registry of scoring engines loaded from YAML files.

    Engines are loaded from video_analyzer/engines/definitions/*.yaml on
    first access. Each YAML file holds one EngineDefinition.
    """

    def __init__(self, definitions_dir: Optional[Path] = None):
        if definitions_dir is None:
            definitions_dir = Path(__file__).parent / "definitions"
        self.definitions_dir = definitions_dir
        self._engines: dict[str, EngineDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all engine definitions from YAML files."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            logger.warning(f"Definitions directory not found: {self.definitions_dir}")
            self._loaded = True
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            try:
                with open(yaml_file, "r") as f:
                    data = yaml.safe_load(f)
                engine = EngineDefinition.model_validate(data)
                self._engines[engine.engine_key] = engine
                logger.debug(f"Loaded engine: {engine.engine_key}")
            except Exception as e:
                logger.error(f"Failed to load engine from {yaml_file}: {e}")

        self._loaded = True
        logger.info(f"Loaded {len(self._engines)} scoring engines")

    def register(self, engine: EngineDefinition) -> None:
        """Add or replace an engine definition in memory."""
        self.load()
        self._engines[engine.engine_key] = engine

    def get(self, engine_key: str) -> Optional[EngineDefinition]:
        """Get engine definition by key."""
        self.load()
        return self._engines.get(engine_key)

    def get_validated(self, engine_key: str) -> EngineDefinition:
        """Get engine definition by key, raising if not found."""
        engine = self.get(engine_key)
        if engine is None:
            raise ValueError(
                f"Engine not found: {engine_key}. "
                f"Available: {self.list_keys()}"
            )
        return engine

    def list_all(self) -> list[EngineDefinition]:
        """List all engines in display order."""
        self.load()
        return sorted(
            self._engines.values(),
            key=lambda e: (e.display_order, e.engine_key),
        )

    def list_keys(self) -> list[str]:
        return [e.engine_key for e in self.list_all()]

    def list_summaries(self) -> list[EngineSummary]:
        return [
            EngineSummary(
                engine_key=e.engine_key,
                engine_name=e.engine_name,
                short_label=e.short_label,
                format_restriction=e.format_restriction,
                weight=e.weight,
            )
            for e in self.list_all()
        ]

    def applicable_for(self, format_type: FormatType) -> list[EngineDefinition]:
        """Engines whose format restriction matches the subject's format."""
        return [e for e in self.list_all() if e.applies_to(format_type)]

    def count(self) -> int:
        self.load()
        return len(self._engines)

    def reload(self) -> None:
        """Force reload all definitions."""
        self._loaded = False
        self._engines.clear()
        self.load()


# Global registry instance
_registry: Optional[EngineRegistry] = None


def get_engine_registry() -> EngineRegistry:
    """Get the global engine registry instance."""
    global _registry
    if _registry is None:
        _registry = EngineRegistry()
        _registry.load()
    return _registry
