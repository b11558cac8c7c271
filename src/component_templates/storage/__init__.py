"""
Durable storage of template records.

Modules:
- repository: TemplateRepository contract and in-memory implementation
- persistence: Parquet-backed FileTemplateRepository
- migration: versioned schema migrations of stored records
"""

from component_templates.storage.repository import (
    LATEST_VERSION,
    MemoryTemplateRepository,
    RepositoryReference,
    TemplateRepository,
)
from component_templates.storage.persistence import FileTemplateRepository
from component_templates.storage.migration import (
    MigrationEngine,
    MigrationStep,
    default_steps,
)

__all__ = [
    "LATEST_VERSION",
    "MemoryTemplateRepository",
    "RepositoryReference",
    "TemplateRepository",
    "FileTemplateRepository",
    "MigrationEngine",
    "MigrationStep",
    "default_steps",
]
