"""
Core data model for the component template registry.

Provides:
- Statement: a (subject, predicate, object, context) quad
- Literal: literal object values with optional datatype/language
- BundledTemplate / ReferenceTemplate: the two template variants
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Union


class Literal(NamedTuple):
    """An RDF literal value."""
    value: str
    datatype: Optional[str] = None
    language: Optional[str] = None


Term = Union[str, Literal]


class Statement(NamedTuple):
    """
    A single statement (quad).

    Subjects and predicates are IRIs or blank nodes ("_:b0"), objects may
    also be literals. The context names the owning graph; None is the
    default graph.
    """
    subject: str
    predicate: str
    object: Term
    context: Optional[str] = None


def is_blank_node(term: Term) -> bool:
    return isinstance(term, str) and term.startswith("_:")


def force_context(
    statements: Iterable[Statement],
    context: Optional[str],
) -> List[Statement]:
    """Return copies of the statements moved into the given graph."""
    return [s._replace(context=context) for s in statements]


class TemplateType(str, Enum):
    """Template variants."""
    BUNDLED = "bundled"
    REFERENCE = "reference"


@dataclass(frozen=True)
class BundledTemplate:
    """A packaged template; the root of every reference chain."""
    id: str
    iri: str
    label: Optional[str] = None

    @property
    def type(self) -> TemplateType:
        return TemplateType.BUNDLED


@dataclass(frozen=True)
class ReferenceTemplate:
    """
    A user-derived template pointing at a parent template.

    core_template is computed whenever the index is rebuilt and is None
    when the chain does not resolve to a bundled template. parent_iri is
    None for records that do not declare a parent.
    """
    id: str
    iri: str
    parent_iri: Optional[str]
    label: Optional[str] = None
    core_template: Optional[BundledTemplate] = None

    @property
    def type(self) -> TemplateType:
        return TemplateType.REFERENCE


Template = Union[BundledTemplate, ReferenceTemplate]
