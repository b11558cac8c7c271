"""
N-Quads Parser and Serializer.

Bundled component definitions ship their statements as N-Quads files.
Each line contains: subject predicate object [graph] .

Grammar:
  nquadsDoc ::= quad? (EOL quad)* EOL?
  quad      ::= subject predicate object graphLabel? '.'
  graphLabel ::= IRIREF | BLANK_NODE_LABEL

Reference: https://www.w3.org/TR/n-quads/
"""

from io import StringIO
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from component_templates.models import Literal, Statement, Term, is_blank_node

XSD_STRING = "http://www.w3.org/2001/XMLSchema#string"

_ESCAPES = {
    't': '\t', 'b': '\b', 'n': '\n', 'r': '\r', 'f': '\f',
    '"': '"', "'": "'", '\\': '\\',
}

_SERIALIZE_ESCAPES = {
    '\\': '\\\\', '"': '\\"', '\n': '\\n', '\r': '\\r', '\t': '\\t',
}


class NQuadsParser:
    """
    Parser for N-Quads format.

    Format:
        <subject> <predicate> <object> .
        <subject> <predicate> "literal"@en <graph> .
    """

    def __init__(self):
        self.line_number = 0

    def parse(self, source: Union[str, Path, StringIO]) -> List[Statement]:
        """
        Parse N-Quads content.

        Args:
            source: N-Quads content as string, file path, or StringIO

        Returns:
            List of statements
        """
        if isinstance(source, Path):
            text = source.read_text(encoding="utf-8")
        elif isinstance(source, StringIO):
            text = source.read()
        else:
            text = source
        return list(self.parse_lines(text.splitlines()))

    def parse_lines(self, lines: Iterable[str]) -> Iterator[Statement]:
        for i, line in enumerate(lines):
            self.line_number = i + 1

            # Strip whitespace and skip empty lines/comments
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            try:
                yield self._parse_line(line)
            except (ValueError, IndexError) as e:
                raise ValueError(f"Error parsing line {self.line_number}: {e}\nLine: {line}")

    def _parse_line(self, line: str) -> Statement:
        pos = 0
        subject, pos = self._parse_resource(line, pos)
        pos = self._skip_ws(line, pos)
        predicate, pos = self._parse_iri(line, pos)
        pos = self._skip_ws(line, pos)
        obj, pos = self._parse_object(line, pos)
        pos = self._skip_ws(line, pos)

        graph = None
        if pos < len(line) and line[pos] != '.':
            graph, pos = self._parse_resource(line, pos)
            pos = self._skip_ws(line, pos)

        if pos >= len(line) or line[pos] != '.':
            raise ValueError("Expected '.' at end of statement")
        rest = line[pos + 1:].strip()
        if rest and not rest.startswith('#'):
            raise ValueError(f"Unexpected content after '.': {rest}")

        return Statement(subject, predicate, obj, graph)

    def _skip_ws(self, line: str, pos: int) -> int:
        while pos < len(line) and line[pos] in ' \t':
            pos += 1
        return pos

    def _parse_resource(self, line: str, pos: int) -> Tuple[str, int]:
        if line.startswith('_:', pos):
            return self._parse_blank_node(line, pos)
        return self._parse_iri(line, pos)

    def _parse_iri(self, line: str, pos: int) -> Tuple[str, int]:
        if line[pos] != '<':
            raise ValueError(f"Expected IRI at position {pos}")
        end = line.index('>', pos)
        return self._unescape(line[pos + 1:end]), end + 1

    def _parse_blank_node(self, line: str, pos: int) -> Tuple[str, int]:
        end = pos + 2
        while end < len(line) and line[end] not in ' \t.':
            end += 1
        if end == pos + 2:
            raise ValueError(f"Empty blank node label at position {pos}")
        # A label may contain '.', but not end with it.
        while end < len(line) and line[end] == '.' and end + 1 < len(line) \
                and line[end + 1] not in ' \t':
            end += 1
            while end < len(line) and line[end] not in ' \t.':
                end += 1
        return line[pos:end], end

    def _parse_object(self, line: str, pos: int) -> Tuple[Term, int]:
        if line[pos] == '"':
            return self._parse_literal(line, pos)
        return self._parse_resource(line, pos)

    def _parse_literal(self, line: str, pos: int) -> Tuple[Literal, int]:
        pos += 1
        chars = []
        while True:
            c = line[pos]
            if c == '"':
                pos += 1
                break
            if c == '\\':
                value, pos = self._parse_escape(line, pos)
                chars.append(value)
                continue
            chars.append(c)
            pos += 1
        value = ''.join(chars)

        if line.startswith('@', pos):
            end = pos + 1
            while end < len(line) and (line[end].isalnum() or line[end] == '-'):
                end += 1
            return Literal(value, language=line[pos + 1:end]), end
        if line.startswith('^^', pos):
            datatype, pos = self._parse_iri(line, pos + 2)
            if datatype == XSD_STRING:
                datatype = None
            return Literal(value, datatype=datatype), pos
        return Literal(value), pos

    def _parse_escape(self, line: str, pos: int) -> Tuple[str, int]:
        c = line[pos + 1]
        if c in _ESCAPES:
            return _ESCAPES[c], pos + 2
        if c == 'u':
            return chr(int(line[pos + 2:pos + 6], 16)), pos + 6
        if c == 'U':
            return chr(int(line[pos + 2:pos + 10], 16)), pos + 10
        raise ValueError(f"Invalid escape sequence: \\{c}")

    def _unescape(self, text: str) -> str:
        if '\\' not in text:
            return text
        chars = []
        pos = 0
        while pos < len(text):
            if text[pos] == '\\':
                value, pos = self._parse_escape(text, pos)
                chars.append(value)
            else:
                chars.append(text[pos])
                pos += 1
        return ''.join(chars)


class NQuadsSerializer:
    """Serializer for N-Quads format."""

    def serialize(self, statements: Iterable[Statement]) -> str:
        lines = []
        for s in statements:
            parts = [
                self._format_resource(s.subject),
                f"<{s.predicate}>",
                self._format_term(s.object),
            ]
            if s.context:
                parts.append(self._format_resource(s.context))
            lines.append(" ".join(parts) + " .")
        return '\n'.join(lines) + ('\n' if lines else '')

    def _format_resource(self, term: str) -> str:
        if is_blank_node(term):
            return term
        return f"<{term}>"

    def _format_term(self, term: Term) -> str:
        if isinstance(term, Literal):
            value = ''.join(_SERIALIZE_ESCAPES.get(c, c) for c in term.value)
            if term.language:
                return f'"{value}"@{term.language}'
            if term.datatype:
                return f'"{value}"^^<{term.datatype}>'
            return f'"{value}"'
        return self._format_resource(term)


def parse_nquads(source: Union[str, Path, StringIO]) -> List[Statement]:
    """
    Parse N-Quads content.

    Args:
        source: N-Quads content as string, file path, or StringIO

    Returns:
        List of statements
    """
    return NQuadsParser().parse(source)


def serialize_nquads(statements: Iterable[Statement], path: Optional[Path] = None) -> str:
    """Serialize statements, optionally writing them to ``path``."""
    text = NQuadsSerializer().serialize(statements)
    if path is not None:
        Path(path).write_text(text, encoding="utf-8")
    return text
