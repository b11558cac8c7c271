"""
Statement file formats.

Currently supported:
- N-Quads (.nq) - used by bundled component definitions
"""

from component_templates.formats.nquads import (
    NQuadsParser,
    NQuadsSerializer,
    parse_nquads,
    serialize_nquads,
)

__all__ = [
    "NQuadsParser",
    "NQuadsSerializer",
    "parse_nquads",
    "serialize_nquads",
]
