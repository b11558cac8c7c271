"""
Component Templates: a registry of reusable ETL component templates.

Bundled templates come packaged with the product; reference templates are
user customizations that inherit from a parent template. The registry
stores both, resolves every reference chain to its bundled core template
and upgrades the stored records between schema versions.
"""

__version__ = "0.4.0"

from component_templates.models import (
    Statement,
    Literal,
    TemplateType,
    BundledTemplate,
    ReferenceTemplate,
    force_context,
)
from component_templates.errors import (
    TemplateError,
    MissingInput,
    InvalidRecord,
    UnresolvedCore,
    MissingParent,
    CyclicReference,
    MigrationFailure,
    UnsupportedVersion,
    IllegalOperation,
    ConfigValidationError,
)
from component_templates.resolver import resolve_core, resolve_all
from component_templates.patch import patch_statements, replace_statements
from component_templates.bundled import (
    BundledDefinition,
    BundledSource,
    StaticBundledSource,
    DirectoryBundledSource,
)
from component_templates.config import RegistryConfig
from component_templates.storage import (
    LATEST_VERSION,
    TemplateRepository,
    MemoryTemplateRepository,
    FileTemplateRepository,
    MigrationEngine,
    MigrationStep,
)
from component_templates.manager import TemplateManager

__all__ = [
    "Statement",
    "Literal",
    "TemplateType",
    "BundledTemplate",
    "ReferenceTemplate",
    "force_context",
    # Errors
    "TemplateError",
    "MissingInput",
    "InvalidRecord",
    "UnresolvedCore",
    "MissingParent",
    "CyclicReference",
    "MigrationFailure",
    "UnsupportedVersion",
    "IllegalOperation",
    "ConfigValidationError",
    # Algorithms
    "resolve_core",
    "resolve_all",
    "patch_statements",
    "replace_statements",
    # Bundled definitions
    "BundledDefinition",
    "BundledSource",
    "StaticBundledSource",
    "DirectoryBundledSource",
    # Storage
    "LATEST_VERSION",
    "TemplateRepository",
    "MemoryTemplateRepository",
    "FileTemplateRepository",
    "MigrationEngine",
    "MigrationStep",
    # Manager
    "RegistryConfig",
    "TemplateManager",
]
