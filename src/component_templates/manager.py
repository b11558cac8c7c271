"""
Template Manager.

Owns the in-memory index of templates (IRI -> template) backed by a
TemplateRepository, and keeps both in step.

Startup:
- import bundled definitions into the repository
- load every stored record into the index
- resolve the core template of every reference template
- migrate the stored records if the store version lags behind
- persist the version

Runtime:
- create reference templates
- patch a template's interface, replace its configuration
- remove reference templates
- read-only snapshots of the index
"""
from __future__ import annotations

import dataclasses
import hashlib
import logging
from threading import RLock
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from component_templates.bundled import (
    BundledSource,
    DirectoryBundledSource,
    StaticBundledSource,
)
from component_templates.config import RegistryConfig
from component_templates.errors import (
    IllegalOperation,
    InvalidRecord,
    MissingInput,
)
from component_templates.models import (
    BundledTemplate,
    Literal,
    ReferenceTemplate,
    Statement,
    Template,
    TemplateType,
    force_context,
)
from component_templates.patch import patch_statements, replace_statements
from component_templates.resolver import resolve_all, resolve_core
from component_templates.storage.migration import MigrationEngine, MigrationStep
from component_templates.storage.persistence import FileTemplateRepository
from component_templates.storage.repository import (
    RepositoryReference,
    TemplateRepository,
)
from component_templates.vocabulary import (
    PREF_LABEL,
    RDF_TYPE,
    TEMPLATE_CLASS,
    TEMPLATE_PARENT,
    configuration_graph,
    description_graph,
    interface_graph,
)

logger = logging.getLogger(__name__)


def bundled_record_id(iri: str) -> str:
    """Stable record id of a bundled template, so re-import replaces it."""
    return "jar-" + hashlib.sha1(iri.encode("utf-8")).hexdigest()[:16]


def _reference_of(template: Template) -> RepositoryReference:
    return RepositoryReference(template.id, template.type)


def _find_template_resource(interface: Iterable[Statement]) -> List[str]:
    return list(dict.fromkeys(
        s.subject for s in interface
        if s.predicate == RDF_TYPE and s.object == TEMPLATE_CLASS
    ))


class TemplateLoader:
    """Turns stored records into templates."""

    def __init__(self, repository: TemplateRepository):
        self.repository = repository

    def load(self, reference: RepositoryReference) -> Template:
        return self.from_interface(reference, self.repository.get_interface(reference))

    def from_interface(
        self,
        reference: RepositoryReference,
        interface: List[Statement],
    ) -> Template:
        """
        Build a template from its interface statements.

        Raises:
            InvalidRecord: no single resource is typed as a template, or a
                reference declares more than one parent
        """
        resources = _find_template_resource(interface)
        if len(resources) != 1:
            raise InvalidRecord(
                f"Expected one template resource in record {reference.id}, "
                f"found {len(resources)}", reference.id)
        iri = resources[0]

        label = None
        parents = []
        for s in interface:
            if s.subject != iri:
                continue
            if s.predicate == PREF_LABEL and label is None:
                label = s.object.value if isinstance(s.object, Literal) else s.object
            elif s.predicate == TEMPLATE_PARENT and not isinstance(s.object, Literal):
                parents.append(s.object)

        if reference.type is TemplateType.BUNDLED:
            return BundledTemplate(id=reference.id, iri=iri, label=label)
        parents = list(dict.fromkeys(parents))
        if len(parents) > 1:
            raise InvalidRecord(
                f"Expected at most one parent of {iri} in record {reference.id}, "
                f"found {len(parents)}", reference.id)
        parent = parents[0] if parents else None
        return ReferenceTemplate(id=reference.id, iri=iri, parent_iri=parent, label=label)


class ReferenceFactory:
    """Writes the records of a new reference template."""

    def __init__(self, repository: TemplateRepository):
        self.repository = repository

    def create(
        self,
        interface: Iterable[Statement],
        configuration: Iterable[Statement],
        description: Iterable[Statement],
        reference: RepositoryReference,
        iri: str,
    ) -> ReferenceTemplate:
        """
        Store the statements of a new reference template under ``iri``.

        The interface must describe one template resource with a parent
        link; that resource is renamed to ``iri``.
        """
        interface = list(interface)
        resources = _find_template_resource(interface)
        if not resources:
            resources = list(dict.fromkeys(
                s.subject for s in interface if s.predicate == TEMPLATE_PARENT))
        if len(resources) != 1:
            raise InvalidRecord(
                f"Expected one template resource in the interface, "
                f"found {len(resources)}", reference.id)
        resource = resources[0]

        def rename(term):
            return iri if term == resource else term

        interface = [
            Statement(rename(s.subject), s.predicate, rename(s.object), s.context)
            for s in interface
        ]
        parents = [
            s.object for s in interface
            if s.subject == iri and s.predicate == TEMPLATE_PARENT
            and not isinstance(s.object, Literal)
        ]
        if len(parents) != 1:
            raise MissingInput(f"Template must declare exactly one parent, found {len(parents)}")

        type_statement = Statement(iri, RDF_TYPE, TEMPLATE_CLASS)
        if type_statement not in [s._replace(context=None) for s in interface]:
            interface.append(type_statement)

        interface = replace_statements(force_context(interface, interface_graph(iri)))
        self.repository.set_interface(reference, interface)
        self.repository.set_config(
            reference,
            replace_statements(force_context(configuration, configuration_graph(iri))))
        self.repository.set_description(
            reference,
            replace_statements(force_context(description, description_graph(iri))))

        template = TemplateLoader(self.repository).from_interface(reference, interface)
        return template


class TemplateManager:
    """
    Registry of bundled and reference templates.

    Mutations are serialized by a lock; every mutation publishes a new
    immutable snapshot that readers use without locking.

    Usage:
        manager = TemplateManager(repository, source, "http://localhost:8080")
        manager.initialize()

        template = manager.create_template(interface, configuration)
        manager.update_interface(template, diff)
        manager.remove(template)
    """

    def __init__(
        self,
        repository: TemplateRepository,
        bundled_source: BundledSource,
        domain_name: str,
        migration_steps: Optional[Iterable[MigrationStep]] = None,
    ):
        """
        Args:
            repository: Durable store of template records
            bundled_source: Provides the packaged definitions
            domain_name: Prefix of IRIs given to new templates
            migration_steps: Overrides the built-in migration table
        """
        self._repository = repository
        self._bundled_source = bundled_source
        self.domain_name = domain_name.rstrip("/")
        self.loader = TemplateLoader(repository)
        self.factory = ReferenceFactory(repository)
        self.migration = MigrationEngine(repository, migration_steps)

        self._lock = RLock()
        self._templates: Dict[str, Template] = {}
        self._snapshot: Mapping[str, Template] = MappingProxyType({})
        self._initialized = False

    @classmethod
    def from_config(cls, config: RegistryConfig) -> "TemplateManager":
        """Build a manager over a file repository and bundled directory."""
        logging.getLogger(__name__.split(".")[0]).setLevel(config.log_level)
        if config.bundled_path:
            source = DirectoryBundledSource(config.bundled_path)
        else:
            source = StaticBundledSource()
        return cls(
            FileTemplateRepository(config.storage_path),
            source,
            config.domain_name,
        )

    @property
    def repository(self) -> TemplateRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load, resolve and migrate all templates.

        Raises:
            MigrationFailure: a migration step failed; nothing is persisted
            UnsupportedVersion: the store is newer than this code
        """
        with self._lock:
            try:
                version = self._repository.get_initial_version()
                # Rejects stores newer than this code before anything is written.
                self.migration.pending_steps(version)
                self._import_bundled()
                self._import_templates()
                if self.migration.needs_migration(version):
                    logger.info(f"Migrating templates from version {version}")
                self.migration.run(
                    version,
                    templates=lambda: list(self._templates.values()),
                    reload=self._reload_templates,
                )
                self._repository.update_finished()
            except Exception as e:
                logger.error(f"Initialization failed: {e}")
                raise
            self._initialized = True
            self._publish()
            logger.info(f"Template manager ready with {len(self._templates)} templates")

    def _import_bundled(self) -> None:
        imported = set()
        for definition in self._bundled_source.list_bundled_definitions():
            record_id = bundled_record_id(definition.iri)
            interface = list(definition.interface)
            if not any(
                s.subject == definition.iri and s.predicate == RDF_TYPE
                and s.object == TEMPLATE_CLASS for s in interface
            ):
                interface.append(Statement(
                    definition.iri, RDF_TYPE, TEMPLATE_CLASS,
                    interface_graph(definition.iri)))
            self._repository.store_bundled(
                record_id,
                interface,
                definition.configuration,
                definition.description,
            )
            imported.add(record_id)

        for reference in self._repository.get_references():
            if reference.type is TemplateType.BUNDLED and reference.id not in imported:
                logger.info(f"Removing bundled template no longer available: {reference.id}")
                self._repository.remove(reference)

    def _import_templates(self) -> None:
        templates: Dict[str, Template] = {}
        for reference in self._repository.get_references():
            try:
                template = self.loader.load(reference)
            except InvalidRecord as e:
                logger.error(f"Invalid template ignored: {reference.id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Can't load template {reference.id}: {e}")
                continue
            if template.iri in templates:
                logger.error(
                    f"Invalid template ignored: {reference.id}, "
                    f"IRI {template.iri} is already used by {templates[template.iri].id}")
                continue
            templates[template.iri] = template

        resolved, errors = resolve_all(templates)
        for iri, error in errors.items():
            logger.error(f"Can't resolve core template of {iri}: {error}")
        self._templates = resolved

    def _reload_templates(self) -> None:
        self._templates = {}
        self._import_templates()

    def _publish(self) -> None:
        self._snapshot = MappingProxyType(dict(self._templates))

    def _check_ready(self) -> None:
        if not self._initialized:
            raise IllegalOperation("Template manager is not initialized")

    def _known(self, template: Template) -> Template:
        current = self._templates.get(template.iri)
        if current is None or current.id != template.id:
            raise IllegalOperation(f"Unknown template: {template.iri}")
        return current

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_templates(self) -> Mapping[str, Template]:
        """Read-only, point-in-time view of IRI -> template."""
        return self._snapshot

    def get_template(self, iri: str) -> Optional[Template]:
        return self._snapshot.get(iri)

    def get_children(self, template: Template) -> List[ReferenceTemplate]:
        """Reference templates whose parent is ``template``."""
        return [
            t for t in self._snapshot.values()
            if t.type is TemplateType.REFERENCE and t.parent_iri == template.iri
        ]

    def get_interface(self, template: Template) -> List[Statement]:
        return self._repository.get_interface(_reference_of(template))

    def get_config(self, template: Template) -> List[Statement]:
        return self._repository.get_config(_reference_of(template))

    def get_description(self, template: Template) -> List[Statement]:
        return self._repository.get_description(_reference_of(template))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_template(
        self,
        interface: Iterable[Statement],
        configuration: Iterable[Statement],
        description: Optional[Iterable[Statement]] = None,
    ) -> ReferenceTemplate:
        """
        Create a new reference template.

        The interface names the parent template with the template link
        predicate. On failure the reserved record is deleted and the
        error re-raised.
        """
        with self._lock:
            self._check_ready()
            record_id = self._repository.reserve_reference_id()
            reference = RepositoryReference.reference(record_id)
            iri = f"{self.domain_name}/resources/components/{record_id}"
            try:
                template = self.factory.create(
                    interface, configuration, description or [], reference, iri)
                if template.iri in self._templates:
                    raise IllegalOperation(f"Template IRI already in use: {template.iri}")
                template = dataclasses.replace(
                    template, core_template=resolve_core(template, self._templates))
                self._templates[template.iri] = template
            except Exception:
                self._rollback(reference)
                raise
            self._publish()
            logger.info(f"Created template {iri} from {template.parent_iri}")
            return template

    def _rollback(self, reference: RepositoryReference) -> None:
        try:
            self._repository.remove(reference)
        except Exception as e:
            logger.error(f"Can't remove record {reference.id} of a failed template: {e}")

    def update_interface(self, template: Template, diff: Iterable[Statement]) -> ReferenceTemplate:
        """
        Patch the interface of a reference template.

        Every (subject, predicate) pair in ``diff`` has its values replaced
        by the values in ``diff``. When the parent link changes, the new
        chain must resolve before anything is stored.

        Raises:
            IllegalOperation: ``template`` is not a known reference template
            MissingParent, CyclicReference: the new parent chain is invalid
            InvalidRecord: the patched interface is not a valid template
        """
        if template.type is not TemplateType.REFERENCE:
            raise IllegalOperation(
                f"Only reference templates can be updated: {template.iri}")
        with self._lock:
            self._check_ready()
            current = self._known(template)
            reference = _reference_of(current)
            diff = force_context(diff, interface_graph(current.iri))
            interface = patch_statements(self._repository.get_interface(reference), diff)

            updated = self.loader.from_interface(reference, interface)
            if updated.iri != current.iri:
                raise IllegalOperation(
                    f"Template IRI can not be changed: {current.iri}")

            parent_changed = updated.parent_iri != current.parent_iri
            if parent_changed:
                candidate = dict(self._templates)
                candidate[updated.iri] = updated
                resolve_core(updated, candidate)

            self._repository.set_interface(reference, interface)
            if parent_changed:
                self._templates[updated.iri] = updated
                self._templates, _ = resolve_all(self._templates)
            else:
                self._templates[updated.iri] = dataclasses.replace(
                    updated, core_template=current.core_template)
            self._publish()
            return self._templates[updated.iri]

    def update_config(self, template: Template, statements: Iterable[Statement]) -> None:
        """
        Replace the whole configuration of a template.

        Unlike interface updates this is not a per-predicate patch. For
        bundled templates the change lasts until the next re-import.
        """
        with self._lock:
            self._check_ready()
            current = self._known(template)
            statements = force_context(statements, configuration_graph(current.iri))
            self._repository.set_config(
                _reference_of(current), replace_statements(statements))

    def remove(self, template: Template) -> None:
        """
        Remove a reference template from the index and the repository.

        Templates that use it as parent are kept; their core no longer
        resolves.
        """
        if template.type is not TemplateType.REFERENCE:
            raise IllegalOperation(f"Can't delete non-reference template: {template.iri}")
        with self._lock:
            self._check_ready()
            current = self._known(template)
            self._repository.remove(_reference_of(current))
            del self._templates[current.iri]

            children = [
                t.iri for t in self._templates.values()
                if t.type is TemplateType.REFERENCE and t.parent_iri == current.iri
            ]
            if children:
                logger.warning(
                    f"Removed template {current.iri} is still the parent of: "
                    f"{', '.join(children)}")
            self._templates, _ = resolve_all(self._templates)
            self._publish()
            logger.info(f"Removed template {current.iri}")
