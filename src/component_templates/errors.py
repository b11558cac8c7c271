"""
Error taxonomy for the template registry.

Load and migration errors for individual records are logged and
aggregated; everything else surfaces to the caller.
"""
from __future__ import annotations

from typing import Dict, Optional


class TemplateError(Exception):
    """Base class for registry errors."""
    pass


class MissingInput(TemplateError):
    """A dependency (parent template, record, file) cannot be found."""
    pass


class InvalidRecord(TemplateError):
    """A stored record cannot be turned into a template."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class UnresolvedCore(TemplateError):
    """A reference chain never reaches a bundled template."""

    def __init__(self, message: str, iri: Optional[str] = None):
        super().__init__(message)
        self.iri = iri


class MissingParent(UnresolvedCore, MissingInput):
    """A template in the chain points to a parent that is not known."""
    pass


class CyclicReference(UnresolvedCore):
    """The reference chain loops back on itself."""
    pass


class MigrationFailure(TemplateError):
    """At least one template failed a migration step."""

    def __init__(self, step, failures: Dict[str, Exception]):
        super().__init__(
            f"Migration {step.from_version} -> {step.to_version} failed "
            f"for {len(failures)} template(s): {', '.join(sorted(failures))}"
        )
        self.step = step
        self.failures = failures


class UnsupportedVersion(TemplateError):
    """The stored schema version is newer than this code understands."""
    pass


class IllegalOperation(TemplateError):
    """The action is not allowed for the given template."""
    pass


class ConfigValidationError(TemplateError):
    """Registry configuration is invalid."""
    pass
