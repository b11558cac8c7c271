"""
Tests for the TemplateManager.
"""

import threading

import pytest

from component_templates.bundled import BundledDefinition, StaticBundledSource
from component_templates.errors import (
    CyclicReference,
    IllegalOperation,
    InvalidRecord,
    MigrationFailure,
    MissingInput,
    MissingParent,
    UnsupportedVersion,
)
from component_templates.manager import TemplateManager, bundled_record_id
from component_templates.models import (
    BundledTemplate,
    Literal,
    ReferenceTemplate,
    Statement,
    TemplateType,
)
from component_templates.storage.migration import MigrationStep
from component_templates.storage.repository import (
    LATEST_VERSION,
    MemoryTemplateRepository,
)
from component_templates.vocabulary import (
    LEGACY_TEMPLATE_PARENT,
    PREF_LABEL,
    RDF_TYPE,
    TEMPLATE_CLASS,
    TEMPLATE_PARENT,
)

DOMAIN = "http://localhost:8080"
CORE_IRI = "http://etl.example/components/t-tabular"
OTHER_CORE_IRI = "http://etl.example/components/l-files"
EX = "http://example.org/"


def bundled_definition(iri, label="Tabular"):
    return BundledDefinition(
        interface=[
            Statement(iri, RDF_TYPE, TEMPLATE_CLASS, iri),
            Statement(iri, PREF_LABEL, Literal(label), iri),
        ],
        configuration=[Statement(f"{iri}/config", f"{EX}delimiter", Literal(","), f"{iri}/configuration")],
        description=[],
        iri=iri,
    )


def new_interface(parent, label="Custom"):
    """Interface of a template to be created, using a blank node resource."""
    return [
        Statement("_:t", RDF_TYPE, TEMPLATE_CLASS),
        Statement("_:t", TEMPLATE_PARENT, parent),
        Statement("_:t", PREF_LABEL, Literal(label)),
    ]


def reference_interface(iri, parent, label=None, parent_predicate=TEMPLATE_PARENT):
    interface = [
        Statement(iri, RDF_TYPE, TEMPLATE_CLASS, iri),
        Statement(iri, parent_predicate, parent, iri),
    ]
    if label:
        interface.append(Statement(iri, PREF_LABEL, Literal(label), iri))
    return interface


@pytest.fixture
def repository():
    return MemoryTemplateRepository()


@pytest.fixture
def source():
    return StaticBundledSource([
        bundled_definition(CORE_IRI),
        bundled_definition(OTHER_CORE_IRI, "Files"),
    ])


@pytest.fixture
def manager(repository, source):
    manager = TemplateManager(repository, source, DOMAIN)
    manager.initialize()
    return manager


class TestInitialize:
    """Test startup loading, resolution and migration."""

    def test_bundled_templates_loaded(self, manager):
        templates = manager.get_templates()

        assert set(templates) == {CORE_IRI, OTHER_CORE_IRI}
        core = templates[CORE_IRI]
        assert isinstance(core, BundledTemplate)
        assert core.type is TemplateType.BUNDLED
        assert core.label == "Tabular"
        assert core.id == bundled_record_id(CORE_IRI)

    def test_bundled_type_statement_added(self, repository):
        """Definitions without a template type statement still load."""
        definition = BundledDefinition([], [], [], CORE_IRI)
        manager = TemplateManager(repository, StaticBundledSource([definition]), DOMAIN)
        manager.initialize()

        assert CORE_IRI in manager.get_templates()

    def test_bundled_replaced_on_restart(self, repository, source):
        TemplateManager(repository, source, DOMAIN).initialize()
        changed = StaticBundledSource([bundled_definition(CORE_IRI, "Renamed")])

        manager = TemplateManager(repository, changed, DOMAIN)
        manager.initialize()

        assert manager.get_templates()[CORE_IRI].label == "Renamed"
        # Bundled templates no longer shipped are dropped
        assert OTHER_CORE_IRI not in manager.get_templates()

    def test_references_resolved(self, repository, source):
        repository.add_reference("1", reference_interface(f"{EX}r1", CORE_IRI))
        repository.add_reference("2", reference_interface(f"{EX}r2", f"{EX}r1"))

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        templates = manager.get_templates()
        assert templates[f"{EX}r1"].core_template.iri == CORE_IRI
        assert templates[f"{EX}r2"].core_template.iri == CORE_IRI

    def test_invalid_record_skipped(self, repository, source, caplog):
        """Records without a template resource are logged and skipped."""
        repository.add_reference("1", [Statement(f"{EX}x", f"{EX}p", Literal("v"))])
        repository.add_reference("2", reference_interface(f"{EX}r2", CORE_IRI))

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        assert f"{EX}r2" in manager.get_templates()
        assert len(manager.get_templates()) == 3
        assert "Invalid template ignored: 1" in caplog.text

    def test_several_parents_skipped(self, repository, source, caplog):
        interface = reference_interface(f"{EX}r", CORE_IRI)
        interface.append(Statement(f"{EX}r", TEMPLATE_PARENT, OTHER_CORE_IRI, f"{EX}r"))
        repository.add_reference("1", interface)

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        assert f"{EX}r" not in manager.get_templates()
        assert "Invalid template ignored: 1" in caplog.text

    def test_duplicate_iri_skipped(self, repository, source):
        repository.add_reference("1", reference_interface(f"{EX}r", CORE_IRI))
        repository.add_reference("2", reference_interface(f"{EX}r", OTHER_CORE_IRI))

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        assert manager.get_templates()[f"{EX}r"].id == "1"

    def test_unresolvable_reference_kept(self, repository, source, caplog):
        """Broken chains are logged; the template stays without a core."""
        repository.add_reference("1", reference_interface(f"{EX}orphan", f"{EX}missing"))
        repository.add_reference("2", reference_interface(f"{EX}a", f"{EX}b"))
        repository.add_reference("3", reference_interface(f"{EX}b", f"{EX}a"))

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        templates = manager.get_templates()
        assert templates[f"{EX}orphan"].core_template is None
        assert templates[f"{EX}a"].core_template is None
        assert "Can't resolve core template" in caplog.text

    def test_version_persisted(self, source):
        repository = MemoryTemplateRepository(version=3)
        TemplateManager(repository, source, DOMAIN).initialize()

        assert repository.version == LATEST_VERSION

    def test_newer_store_rejected(self, source):
        """Nothing is imported or removed when the store is too new."""
        repository = MemoryTemplateRepository(version=LATEST_VERSION + 1)
        repository.store_bundled(bundled_record_id(f"{EX}retired"), [], [], [])
        repository.add_reference("1", reference_interface(f"{EX}r", CORE_IRI))
        before = repository.get_references()
        manager = TemplateManager(repository, source, DOMAIN)

        with pytest.raises(UnsupportedVersion):
            manager.initialize()
        assert repository.version == LATEST_VERSION + 1
        assert repository.get_references() == before

    def test_operations_require_initialize(self, repository, source):
        manager = TemplateManager(repository, source, DOMAIN)

        with pytest.raises(IllegalOperation, match="not initialized"):
            manager.create_template(new_interface(CORE_IRI), [])


class TestStartupMigration:
    """Test migration as part of initialize()."""

    def test_version_1_store_upgraded(self, source):
        """Legacy parent links and description labels are migrated."""
        repository = MemoryTemplateRepository(version=1)
        iri = f"{EX}legacy"
        repository.add_reference(
            "1",
            reference_interface(iri, CORE_IRI, parent_predicate=LEGACY_TEMPLATE_PARENT),
            configuration=[Statement("_:c", f"{EX}delimiter", Literal(";"), None)],
            description=[Statement(iri, PREF_LABEL, Literal("Legacy"), None)],
        )

        manager = TemplateManager(repository, source, DOMAIN)
        manager.initialize()

        template = manager.get_templates()[iri]
        assert template.parent_iri == CORE_IRI
        assert template.core_template.iri == CORE_IRI
        assert template.label == "Legacy"
        assert {s.context for s in repository.get_config(template)} == {f"{iri}/configuration"}
        assert repository.version == LATEST_VERSION

    def test_step_sequence_and_reloads(self, source):
        """Version 1: 1->2 and 2->3 reload, 3->4 does not; version 4 persisted."""
        repository = MemoryTemplateRepository(version=1)
        events = []

        def step(from_version, requires_reload):
            def migrate(template, repo):
                events.append(f"step{from_version}")
            return MigrationStep(from_version, from_version + 1, "", migrate, requires_reload)

        manager = TemplateManager(
            repository, source, DOMAIN,
            migration_steps=[step(1, True), step(2, True), step(3, False)],
        )
        original_reload = manager._reload_templates

        def reload():
            events.append("reload")
            original_reload()

        manager._reload_templates = reload
        manager.initialize()

        # Two bundled templates are visited by every step
        assert events == [
            "step1", "step1", "reload",
            "step2", "step2", "reload",
            "step3", "step3",
        ]
        assert repository.version == 4

    def test_failed_migration_not_persisted(self, source):
        """A failing step is fatal and leaves the stored version untouched."""
        repository = MemoryTemplateRepository(version=1)
        repository.add_reference("1", reference_interface(f"{EX}r1", CORE_IRI))
        ran = []

        def failing(template, repo):
            if template.iri == f"{EX}r1":
                raise ValueError("corrupt")

        steps = [
            MigrationStep(1, 2, "", failing, True),
            MigrationStep(2, 3, "", lambda t, r: ran.append(t.iri), True),
            MigrationStep(3, 4, "", lambda t, r: ran.append(t.iri), False),
        ]
        manager = TemplateManager(repository, source, DOMAIN, migration_steps=steps)

        with pytest.raises(MigrationFailure):
            manager.initialize()

        assert ran == []
        assert repository.version == 1
        assert manager.get_templates() == {}
        with pytest.raises(IllegalOperation):
            manager.create_template(new_interface(CORE_IRI), [])

    def test_retry_restarts_at_stored_version(self, source):
        """After a failure the next start begins again at the old version."""
        repository = MemoryTemplateRepository(version=2)
        repository.add_reference("1", reference_interface(f"{EX}r1", CORE_IRI))
        calls = []
        broken = {"value": True}

        def step(from_version):
            def migrate(template, repo):
                calls.append(from_version)
                if from_version == 3 and broken["value"] and template.iri == f"{EX}r1":
                    raise ValueError("fails once")
            return MigrationStep(from_version, from_version + 1, "", migrate, True)

        steps = [step(1), step(2), step(3)]
        with pytest.raises(MigrationFailure):
            TemplateManager(repository, source, DOMAIN, migration_steps=steps).initialize()

        broken["value"] = False
        calls.clear()
        TemplateManager(repository, source, DOMAIN, migration_steps=steps).initialize()

        assert repository.get_initial_version() == 2
        assert calls[0] == 2
        assert 1 not in calls
        assert repository.version == LATEST_VERSION


class TestCreateTemplate:
    """Test create_template."""

    def test_create(self, manager, repository):
        template = manager.create_template(
            new_interface(CORE_IRI, "Semicolon CSV"),
            [Statement("_:c", f"{EX}delimiter", Literal(";"))],
            [Statement("_:d", f"{EX}note", Literal("desc"))],
        )

        assert isinstance(template, ReferenceTemplate)
        assert template.iri == f"{DOMAIN}/resources/components/{template.id}"
        assert template.parent_iri == CORE_IRI
        assert template.label == "Semicolon CSV"
        assert template.core_template.iri == CORE_IRI
        assert manager.get_templates()[template.iri] == template

        interface = repository.get_interface(template)
        assert Statement(template.iri, TEMPLATE_PARENT, CORE_IRI, template.iri) in interface
        assert all(s.context == template.iri for s in interface)
        assert {s.context for s in repository.get_config(template)} == {
            f"{template.iri}/configuration"}
        assert {s.context for s in repository.get_description(template)} == {
            f"{template.iri}/description"}

    def test_create_on_reference(self, manager):
        """A reference can be derived from another reference."""
        first = manager.create_template(new_interface(CORE_IRI), [])
        second = manager.create_template(new_interface(first.iri), [])

        assert second.parent_iri == first.iri
        assert second.core_template.iri == CORE_IRI
        assert manager.get_children(first) == [second]

    def test_ids_not_reused(self, manager):
        first = manager.create_template(new_interface(CORE_IRI), [])
        manager.remove(first)
        second = manager.create_template(new_interface(CORE_IRI), [])

        assert second.id != first.id
        assert second.iri != first.iri

    def test_missing_parent_rolls_back(self, manager, repository):
        """Failure after reserving the id leaves no record and no entry."""
        before = set(r.id for r in repository.get_references())

        with pytest.raises(MissingParent):
            manager.create_template(new_interface(f"{EX}does-not-exist"), [])

        assert set(r.id for r in repository.get_references()) == before
        assert len(manager.get_templates()) == 2

    def test_no_parent_rolls_back(self, manager, repository):
        before = set(r.id for r in repository.get_references())
        interface = [Statement("_:t", RDF_TYPE, TEMPLATE_CLASS)]

        with pytest.raises(MissingInput):
            manager.create_template(interface, [])

        assert set(r.id for r in repository.get_references()) == before

    def test_invalid_interface_rolls_back(self, manager, repository):
        before = set(r.id for r in repository.get_references())

        with pytest.raises(InvalidRecord):
            manager.create_template([Statement(f"{EX}s", f"{EX}p", Literal("x"))], [])

        assert set(r.id for r in repository.get_references()) == before

    def test_storage_failure_rolls_back(self, manager, repository, monkeypatch):
        def broken(record, statements):
            raise OSError("disk full")

        monkeypatch.setattr(repository, "set_config", broken)
        before = set(r.id for r in repository.get_references())

        with pytest.raises(OSError):
            manager.create_template(new_interface(CORE_IRI), [])

        assert set(r.id for r in repository.get_references()) == before
        assert len(manager.get_templates()) == 2


class TestUpdateInterface:
    """Test update_interface."""

    def test_patch(self, manager, repository):
        template = manager.create_template(new_interface(CORE_IRI, "Old"), [])
        option = f"{EX}option"
        manager.update_interface(template, [
            Statement(template.iri, option, Literal("a")),
        ])

        updated = manager.update_interface(template, [
            Statement(template.iri, PREF_LABEL, Literal("New")),
        ])

        assert updated.label == "New"
        assert updated.core_template.iri == CORE_IRI
        assert manager.get_templates()[template.iri].label == "New"
        interface = repository.get_interface(template)
        labels = [s for s in interface if s.predicate == PREF_LABEL]
        assert labels == [Statement(template.iri, PREF_LABEL, Literal("New"), template.iri)]
        # Untouched predicate survives
        assert Statement(template.iri, option, Literal("a"), template.iri) in interface

    def test_diff_forced_into_template_graph(self, manager, repository):
        template = manager.create_template(new_interface(CORE_IRI), [])

        manager.update_interface(template, [
            Statement(template.iri, f"{EX}p", Literal("v"), "http://elsewhere/graph"),
        ])

        assert all(s.context == template.iri for s in repository.get_interface(template))

    def test_change_parent(self, manager):
        template = manager.create_template(new_interface(CORE_IRI), [])

        updated = manager.update_interface(template, [
            Statement(template.iri, TEMPLATE_PARENT, OTHER_CORE_IRI),
        ])

        assert updated.parent_iri == OTHER_CORE_IRI
        assert updated.core_template.iri == OTHER_CORE_IRI

    def test_change_parent_updates_descendants(self, manager):
        parent = manager.create_template(new_interface(CORE_IRI), [])
        child = manager.create_template(new_interface(parent.iri), [])

        manager.update_interface(parent, [
            Statement(parent.iri, TEMPLATE_PARENT, OTHER_CORE_IRI),
        ])

        assert manager.get_templates()[child.iri].core_template.iri == OTHER_CORE_IRI

    def test_cycle_rejected(self, manager, repository):
        """A parent change that creates a cycle is refused before storing."""
        parent = manager.create_template(new_interface(CORE_IRI), [])
        child = manager.create_template(new_interface(parent.iri), [])
        before = repository.get_interface(parent)

        with pytest.raises(CyclicReference):
            manager.update_interface(parent, [
                Statement(parent.iri, TEMPLATE_PARENT, child.iri),
            ])

        assert repository.get_interface(parent) == before
        assert manager.get_templates()[parent.iri].parent_iri == CORE_IRI

    def test_unknown_parent_rejected(self, manager):
        template = manager.create_template(new_interface(CORE_IRI), [])

        with pytest.raises(MissingParent):
            manager.update_interface(template, [
                Statement(template.iri, TEMPLATE_PARENT, f"{EX}nothing"),
            ])

    def test_several_parents_rejected(self, manager, repository):
        """A diff with two parent links is refused before storing."""
        template = manager.create_template(new_interface(CORE_IRI), [])
        before = repository.get_interface(template)

        with pytest.raises(InvalidRecord, match="at most one parent"):
            manager.update_interface(template, [
                Statement(template.iri, TEMPLATE_PARENT, CORE_IRI),
                Statement(template.iri, TEMPLATE_PARENT, OTHER_CORE_IRI),
            ])

        assert repository.get_interface(template) == before
        assert manager.get_templates()[template.iri].parent_iri == CORE_IRI

    def test_bundled_rejected(self, manager):
        core = manager.get_templates()[CORE_IRI]

        with pytest.raises(IllegalOperation, match="Only reference templates"):
            manager.update_interface(core, [])

    def test_unknown_template_rejected(self, manager):
        stranger = ReferenceTemplate(id="999", iri=f"{EX}stranger", parent_iri=CORE_IRI)

        with pytest.raises(IllegalOperation, match="Unknown template"):
            manager.update_interface(stranger, [])


class TestUpdateConfig:
    """Test update_config."""

    def test_full_replacement(self, manager, repository):
        """Configuration is replaced as a whole, not patched per predicate."""
        template = manager.create_template(
            new_interface(CORE_IRI),
            [
                Statement("_:c", f"{EX}delimiter", Literal(";")),
                Statement("_:c", f"{EX}encoding", Literal("utf-8")),
            ],
        )

        manager.update_config(template, [Statement("_:c", f"{EX}delimiter", Literal("|"))])

        assert repository.get_config(template) == [
            Statement("_:c", f"{EX}delimiter", Literal("|"), f"{template.iri}/configuration"),
        ]

    def test_bundled_allowed(self, manager, repository):
        core = manager.get_templates()[CORE_IRI]

        manager.update_config(core, [Statement("_:c", f"{EX}delimiter", Literal("\t"))])

        config = repository.get_config(core)
        assert config == [
            Statement("_:c", f"{EX}delimiter", Literal("\t"), f"{CORE_IRI}/configuration"),
        ]


class TestRemove:
    """Test remove."""

    def test_remove(self, manager, repository):
        template = manager.create_template(new_interface(CORE_IRI), [])

        manager.remove(template)

        assert template.iri not in manager.get_templates()
        assert template.id not in [r.id for r in repository.get_references()]

    def test_remove_bundled_rejected(self, manager):
        with pytest.raises(IllegalOperation, match="non-reference"):
            manager.remove(manager.get_templates()[CORE_IRI])
        assert CORE_IRI in manager.get_templates()

    def test_remove_unknown_rejected(self, manager):
        template = manager.create_template(new_interface(CORE_IRI), [])
        manager.remove(template)

        with pytest.raises(IllegalOperation):
            manager.remove(template)

    def test_children_left_dangling(self, manager, caplog):
        """Removal does not cascade; children lose their core template."""
        parent = manager.create_template(new_interface(CORE_IRI), [])
        child = manager.create_template(new_interface(parent.iri), [])

        manager.remove(parent)

        remaining = manager.get_templates()[child.iri]
        assert remaining.parent_iri == parent.iri
        assert remaining.core_template is None
        assert "still the parent of" in caplog.text


class TestSnapshots:
    """Test read-only snapshots and concurrent use."""

    def test_snapshot_read_only(self, manager):
        templates = manager.get_templates()

        with pytest.raises(TypeError):
            templates["x"] = None

    def test_snapshot_point_in_time(self, manager):
        before = manager.get_templates()
        manager.create_template(new_interface(CORE_IRI), [])

        assert len(before) == 2
        assert len(manager.get_templates()) == 3

    def test_concurrent_creates(self, manager):
        created = []
        errors = []

        def worker():
            try:
                for _ in range(10):
                    created.append(manager.create_template(new_interface(CORE_IRI), []))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len({t.iri for t in created}) == 40
        assert len(manager.get_templates()) == 42
