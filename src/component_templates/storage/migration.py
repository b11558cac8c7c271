"""
Schema migrations for stored template records.

Migrations are an ordered table of steps keyed by the version they upgrade
from. Starting at the stored version, every later step is applied in turn
to every known template. A step that fails for any template halts the
engine; the version is only persisted by the caller once all steps passed.

Steps that change data held by the in-memory index request a reload, which
rebuilds the index before the next step runs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from component_templates.errors import MigrationFailure, UnsupportedVersion
from component_templates.models import Template, TemplateType, force_context
from component_templates.storage.repository import LATEST_VERSION, TemplateRepository
from component_templates.vocabulary import (
    LEGACY_TEMPLATE_PARENT,
    PREF_LABEL,
    TEMPLATE_PARENT,
    configuration_graph,
    interface_graph,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationStep:
    """A single migration step."""
    from_version: int
    to_version: int
    description: str
    migrate: Callable[[Template, TemplateRepository], None]
    requires_reload: bool = False


class MigrationEngine:
    """
    Applies migration steps in order.

    Usage:
        engine = MigrationEngine(repository)
        engine.run(
            repository.get_initial_version(),
            templates=lambda: manager_index.values(),
            reload=rebuild_index,
        )
    """

    def __init__(
        self,
        repository: TemplateRepository,
        steps: Optional[Iterable[MigrationStep]] = None,
        latest_version: int = LATEST_VERSION,
    ):
        if steps is None:
            steps = default_steps()
        self.repository = repository
        self._steps = sorted(steps, key=lambda step: step.from_version)
        self.latest_version = latest_version

    @property
    def steps(self) -> List[MigrationStep]:
        return list(self._steps)

    def needs_migration(self, version: int) -> bool:
        return version < self.latest_version

    def pending_steps(self, version: int) -> List[MigrationStep]:
        """Steps to run for a store at the given version."""
        if version > self.latest_version:
            raise UnsupportedVersion(
                f"Stored version {version} is newer than supported "
                f"version {self.latest_version}")
        # Version 0 stores share the version 1 layout.
        start = max(version, 1)
        return [
            step for step in self._steps
            if start <= step.from_version < self.latest_version
        ]

    def run(
        self,
        initial_version: int,
        templates: Callable[[], Iterable[Template]],
        reload: Callable[[], None],
    ) -> List[MigrationStep]:
        """
        Migrate from ``initial_version`` to the latest version.

        Args:
            initial_version: Version the store was opened with
            templates: Returns the currently known templates
            reload: Rebuilds the in-memory index

        Returns:
            The executed steps, in order

        Raises:
            MigrationFailure: a step failed for at least one template
            UnsupportedVersion: the store is newer than this code
        """
        executed = []
        for step in self.pending_steps(initial_version):
            logger.info(f"Migrating to version {step.to_version}: {step.description}")
            failures = self._apply(step, templates())
            if failures:
                raise MigrationFailure(step, failures)
            executed.append(step)
            if step.requires_reload:
                logger.info("Reloading templates ...")
                reload()
        return executed

    def _apply(
        self,
        step: MigrationStep,
        templates: Iterable[Template],
    ) -> Dict[str, Exception]:
        failures: Dict[str, Exception] = {}
        for template in list(templates):
            try:
                step.migrate(template, self.repository)
            except Exception as e:
                logger.error(f"Migration of component '{template.iri}' failed: {e}")
                failures[template.iri] = e
        return failures


# Built-in migrations. Bundled records are re-imported on every start, so
# only reference records are touched.

def migrate_parent_predicate(template: Template, repository: TemplateRepository) -> None:
    """Version 1 -> 2: rename the legacy parent link predicate."""
    if template.type is not TemplateType.REFERENCE:
        return
    interface = repository.get_interface(template)
    updated = [
        s._replace(predicate=TEMPLATE_PARENT)
        if s.predicate == LEGACY_TEMPLATE_PARENT else s
        for s in interface
    ]
    if updated != interface:
        repository.set_interface(template, list(dict.fromkeys(updated)))


def migrate_labels(template: Template, repository: TemplateRepository) -> None:
    """Version 2 -> 3: move the template label from description to interface."""
    if template.type is not TemplateType.REFERENCE:
        return
    description = repository.get_description(template)
    labels = [
        s for s in description
        if s.subject == template.iri and s.predicate == PREF_LABEL
    ]
    if not labels:
        return
    interface = [
        s for s in repository.get_interface(template)
        if not (s.subject == template.iri and s.predicate == PREF_LABEL)
    ]
    interface.extend(force_context(labels, interface_graph(template.iri)))
    repository.set_interface(template, interface)
    repository.set_description(
        template, [s for s in description if s not in labels])


def migrate_configuration_graph(template: Template, repository: TemplateRepository) -> None:
    """Version 3 -> 4: store configuration in the configuration graph."""
    if template.type is not TemplateType.REFERENCE:
        return
    graph = configuration_graph(template.iri)
    configuration = repository.get_config(template)
    if any(s.context != graph for s in configuration):
        repository.set_config(
            template, list(dict.fromkeys(force_context(configuration, graph))))


def default_steps() -> List[MigrationStep]:
    """The built-in migration table."""
    return [
        MigrationStep(
            from_version=1,
            to_version=2,
            description="Rename legacy parent template links",
            migrate=migrate_parent_predicate,
            requires_reload=True,
        ),
        MigrationStep(
            from_version=2,
            to_version=3,
            description="Move template labels into the interface",
            migrate=migrate_labels,
            requires_reload=True,
        ),
        MigrationStep(
            from_version=3,
            to_version=4,
            description="Move configuration into the configuration graph",
            migrate=migrate_configuration_graph,
            # Configuration is not held in memory.
            requires_reload=False,
        ),
    ]
