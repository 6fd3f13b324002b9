"""Registry for model descriptors.

Loads provider definition files from YAML and serves descriptor lookups.
Extra descriptors can be registered at runtime; reload() drops them.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

import yaml

from timeline_ai.llm.schemas import ModelDescriptor, ProviderKind
from timeline_ai.model_catalog.schemas import ProviderDefinition

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class ModelCatalog:
    """Loads and serves model descriptors keyed by model id."""

    def __init__(self, definitions_dir: Optional[Path] = None) -> None:
        self.definitions_dir = definitions_dir or DEFINITIONS_DIR
        self._models: dict[str, ModelDescriptor] = {}
        self._lock = threading.Lock()
        self._load_models()

    def _load_models(self) -> None:
        """Load every *.yaml provider file in the definitions directory."""
        if not self.definitions_dir.exists():
            logger.warning(f"Model definitions dir not found: {self.definitions_dir}")
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            try:
                with open(yaml_file) as f:
                    data = yaml.safe_load(f) or {}
                provider = ProviderDefinition(**data)
            except Exception as e:
                logger.error(f"Failed to load model definitions {yaml_file}: {e}")
                continue

            for descriptor in provider.descriptors():
                self._models[descriptor.id] = descriptor
                logger.debug(f"Loaded model: {descriptor.id}")

        logger.info(f"Loaded {len(self._models)} model descriptors")

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        with self._lock:
            return self._models.get(model_id)

    def list_all(self, provider_kind: Optional[ProviderKind] = None) -> list[ModelDescriptor]:
        """List static and registered models, optionally for one provider."""
        with self._lock:
            models = list(self._models.values())
        if provider_kind:
            models = [m for m in models if m.provider_kind == provider_kind]
        return models

    def register(self, descriptor: ModelDescriptor) -> None:
        """Add or replace a descriptor (used for discovered local models)."""
        with self._lock:
            self._models[descriptor.id] = descriptor

    @property
    def count(self) -> int:
        return len(self._models)

    def reload(self) -> None:
        """Reload definitions from disk, dropping registered models."""
        with self._lock:
            self._models.clear()
        self._load_models()
