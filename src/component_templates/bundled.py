"""
Sources of bundled (packaged) template definitions.

A bundled definition is the full content of a packaged component:
interface, configuration and description statements plus its IRI. The
registry reads all of them once per start and replaces any previously
imported copy.

Directory layout read by DirectoryBundledSource:

    bundled_path/
        <component>/
            component.yaml      iri: http://etl.example/components/t-tabular
            interface.nq
            configuration.nq
            description.nq      (optional)
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, NamedTuple, Sequence

import yaml

from component_templates.errors import InvalidRecord
from component_templates.formats.nquads import parse_nquads
from component_templates.models import Statement

logger = logging.getLogger(__name__)


class BundledDefinition(NamedTuple):
    """Content of one packaged component."""
    interface: Sequence[Statement]
    configuration: Sequence[Statement]
    description: Sequence[Statement]
    iri: str


class BundledSource(ABC):
    """Provides the bundled definitions available to the registry."""

    @abstractmethod
    def list_bundled_definitions(self) -> List[BundledDefinition]:
        pass


class StaticBundledSource(BundledSource):
    """A fixed list of definitions."""

    def __init__(self, definitions: Iterable[BundledDefinition] = ()):
        self._definitions = list(definitions)

    def list_bundled_definitions(self) -> List[BundledDefinition]:
        return list(self._definitions)


class DirectoryBundledSource(BundledSource):
    """
    Reads one definition per component directory.

    Directories that cannot be read are logged and skipped.
    """

    DESCRIPTOR_FILE = "component.yaml"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def list_bundled_definitions(self) -> List[BundledDefinition]:
        if not self.path.exists():
            logger.warning(f"Bundled template directory not found: {self.path}")
            return []
        definitions = []
        for component_dir in sorted(self.path.iterdir()):
            if not (component_dir / self.DESCRIPTOR_FILE).exists():
                continue
            try:
                definitions.append(self.load_definition(component_dir))
            except (InvalidRecord, ValueError, OSError, yaml.YAMLError) as e:
                logger.error(f"Can't load bundled template {component_dir.name}: {e}")
        return definitions

    def load_definition(self, component_dir: Path) -> BundledDefinition:
        with open(component_dir / self.DESCRIPTOR_FILE, encoding="utf-8") as f:
            descriptor = yaml.safe_load(f) or {}
        if not isinstance(descriptor, dict) or not descriptor.get("iri"):
            raise InvalidRecord(
                f"Missing 'iri' in {component_dir / self.DESCRIPTOR_FILE}",
                component_dir.name)

        def read(key: str, default: str, required: bool) -> List[Statement]:
            path = component_dir / descriptor.get(key, default)
            if not path.exists():
                if required:
                    raise InvalidRecord(f"Missing file: {path}", component_dir.name)
                return []
            return parse_nquads(path)

        return BundledDefinition(
            interface=read("interface", "interface.nq", True),
            configuration=read("configuration", "configuration.nq", True),
            description=read("description", "description.nq", False),
            iri=descriptor["iri"],
        )
