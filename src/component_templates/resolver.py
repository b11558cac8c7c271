"""
Reference chain resolution.

Every reference template points at a parent by IRI. Following the parent
links must end, after zero or more reference templates, in a bundled
template: the core template of the chain.
"""
from __future__ import annotations

import dataclasses
from typing import Dict, Mapping, Tuple

from component_templates.errors import CyclicReference, MissingParent, UnresolvedCore
from component_templates.models import (
    BundledTemplate,
    ReferenceTemplate,
    Template,
    TemplateType,
)


def resolve_core(
    start: ReferenceTemplate,
    index: Mapping[str, Template],
) -> BundledTemplate:
    """
    Walk the parent links of ``start`` until a bundled template is found.

    Raises:
        MissingParent: a parent IRI is not in the index
        CyclicReference: the chain visits a template twice
    """
    visited = {start.iri}
    current = start
    # A valid chain cannot be longer than the index.
    for _ in range(len(index) + 1):
        if current.parent_iri is None:
            raise MissingParent(
                f"Template '{current.iri}' declares no parent", start.iri)
        parent = index.get(current.parent_iri)
        if parent is None:
            raise MissingParent(
                f"Missing parent template '{current.parent_iri}' "
                f"of '{current.iri}'", start.iri)
        if parent.type is TemplateType.BUNDLED:
            return parent
        elif parent.type is TemplateType.REFERENCE:
            if parent.iri in visited:
                raise CyclicReference(
                    f"Cyclic reference through '{parent.iri}'", start.iri)
            visited.add(parent.iri)
            current = parent
        else:
            raise UnresolvedCore(
                f"Invalid template type: {parent.iri}", start.iri)
    raise CyclicReference(
        f"Reference chain of '{start.iri}' does not terminate", start.iri)


def resolve_all(
    index: Mapping[str, Template],
) -> Tuple[Dict[str, Template], Dict[str, UnresolvedCore]]:
    """
    Recompute the core template of every reference template.

    Returns:
        Tuple of (new index, errors by IRI). Unresolved references stay in
        the index with core_template set to None.
    """
    resolved: Dict[str, Template] = {}
    errors: Dict[str, UnresolvedCore] = {}
    for iri, template in index.items():
        if template.type is not TemplateType.REFERENCE:
            resolved[iri] = template
            continue
        try:
            core = resolve_core(template, index)
        except UnresolvedCore as e:
            errors[iri] = e
            core = None
        resolved[iri] = dataclasses.replace(template, core_template=core)
    return resolved, errors
