"""
Statement set updates.

Interface updates are partial: a diff replaces the whole value set of
every (subject, predicate) pair it mentions and leaves the other pairs
alone. Configuration updates replace the entire set.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Set

from component_templates.models import Statement


def patch_statements(
    original: Iterable[Statement],
    diff: Iterable[Statement],
) -> List[Statement]:
    """
    Merge ``diff`` into ``original``.

    All diff statements are kept. Original statements are dropped when
    their (subject, predicate) pair appears in the diff, even if the diff
    supplies fewer values for that pair.

    Example:
        original = [(S, P1, "a"), (S, P1, "b"), (S, P2, "c")]
        diff = [(S, P1, "z")]
        -> [(S, P1, "z"), (S, P2, "c")]
    """
    diff = list(diff)
    to_replace: Dict[str, Set[str]] = {}
    for statement in diff:
        to_replace.setdefault(statement.subject, set()).add(statement.predicate)

    output = list(diff)
    output.extend(
        s for s in original
        if s.predicate not in to_replace.get(s.subject, ())
    )
    return list(dict.fromkeys(output))


def replace_statements(statements: Iterable[Statement]) -> List[Statement]:
    """New content of a fully replaced set (duplicates removed)."""
    return list(dict.fromkeys(statements))
