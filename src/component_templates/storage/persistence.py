"""
File-backed template repository.

Statement sets are stored as Parquet files, one directory per record:

    base_path/
        repository.json                    {"version": 4, "next_id": 12}
        templates/<id>/record.json         {"id": "12", "type": "reference"}
        templates/<id>/interface.parquet
        templates/<id>/configuration.parquet
        templates/<id>/description.parquet

Every file is written under a temporary name and renamed into place, so a
single write is atomic. A workspace that has a templates directory but no
repository.json predates versioning and reports version 0.
"""

from __future__ import annotations
from pathlib import Path
from threading import RLock
from typing import Iterable, List
import json
import logging
import os
import shutil

import polars as pl

from component_templates.errors import InvalidRecord
from component_templates.models import Literal, Statement, TemplateType, is_blank_node
from component_templates.storage.repository import (
    LATEST_VERSION,
    RepositoryReference,
    TemplateRepository,
)

logger = logging.getLogger(__name__)

KIND_IRI = "iri"
KIND_BNODE = "bnode"
KIND_LITERAL = "literal"

STATEMENT_SCHEMA = {
    "s": pl.Utf8,
    "p": pl.Utf8,
    "o": pl.Utf8,
    "o_kind": pl.Utf8,
    "o_datatype": pl.Utf8,
    "o_lang": pl.Utf8,
    "g": pl.Utf8,
}


def statements_to_frame(statements: Iterable[Statement]) -> pl.DataFrame:
    """Build a DataFrame with one row per statement."""
    rows = {name: [] for name in STATEMENT_SCHEMA}
    for statement in statements:
        obj = statement.object
        rows["s"].append(statement.subject)
        rows["p"].append(statement.predicate)
        if isinstance(obj, Literal):
            rows["o"].append(obj.value)
            rows["o_kind"].append(KIND_LITERAL)
            rows["o_datatype"].append(obj.datatype)
            rows["o_lang"].append(obj.language)
        else:
            rows["o"].append(obj)
            rows["o_kind"].append(KIND_BNODE if is_blank_node(obj) else KIND_IRI)
            rows["o_datatype"].append(None)
            rows["o_lang"].append(None)
        rows["g"].append(statement.context)
    return pl.DataFrame(rows, schema=STATEMENT_SCHEMA)


def frame_to_statements(df: pl.DataFrame) -> List[Statement]:
    """Inverse of statements_to_frame."""
    result = []
    for row in df.iter_rows(named=True):
        if row["o_kind"] == KIND_LITERAL:
            obj = Literal(row["o"], row["o_datatype"], row["o_lang"])
        else:
            obj = row["o"]
        result.append(Statement(row["s"], row["p"], obj, row["g"]))
    return result


class FileTemplateRepository(TemplateRepository):
    """
    Repository persisting records to a workspace directory.

    Usage:
        repository = FileTemplateRepository("./data/templates")
        for reference in repository.get_references():
            interface = repository.get_interface(reference)
    """

    META_FILE = "repository.json"
    TEMPLATES_DIR = "templates"
    RECORD_FILE = "record.json"
    INTERFACE_FILE = "interface.parquet"
    CONFIGURATION_FILE = "configuration.parquet"
    DESCRIPTION_FILE = "description.parquet"

    def __init__(self, base_path: str | Path):
        """
        Open (or create) a repository.

        Args:
            base_path: Workspace directory
        """
        self.base_path = Path(base_path)
        self._templates_path = self.base_path / self.TEMPLATES_DIR
        self._lock = RLock()

        meta = self._load_meta()
        self._initial_version = meta["version"]
        self._version = meta["version"]
        self._next_id = meta["next_id"]

        self._templates_path.mkdir(parents=True, exist_ok=True)
        if not (self.base_path / self.META_FILE).exists():
            self._save_meta()

    def _load_meta(self) -> dict:
        meta_file = self.base_path / self.META_FILE
        if meta_file.exists():
            with open(meta_file, encoding="utf-8") as f:
                data = json.load(f)
            return {
                "version": int(data.get("version", 0)),
                "next_id": int(data.get("next_id", 1)),
            }
        if self._templates_path.exists():
            logger.info(f"No version information in {self.base_path}, assuming version 0")
            return {"version": 0, "next_id": self._max_numeric_id() + 1}
        return {"version": LATEST_VERSION, "next_id": 1}

    def _max_numeric_id(self) -> int:
        ids = [
            int(item.name) for item in self._templates_path.iterdir()
            if item.is_dir() and item.name.isdigit()
        ]
        return max(ids, default=0)

    def _save_meta(self) -> None:
        self._write_json(
            self.base_path / self.META_FILE,
            {"version": self._version, "next_id": self._next_id},
        )

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)

    def _record_dir(self, record) -> Path:
        return self._templates_path / record.id

    def _write_statements(self, path: Path, statements: Iterable[Statement]) -> None:
        tmp = path.with_name(path.name + ".tmp")
        statements_to_frame(statements).write_parquet(tmp)
        os.replace(tmp, path)

    def _read_statements(self, record, file_name: str) -> List[Statement]:
        record_dir = self._record_dir(record)
        if not record_dir.is_dir():
            raise InvalidRecord(f"Unknown record: {record.id}", record.id)
        path = record_dir / file_name
        if not path.exists():
            return []
        return frame_to_statements(pl.read_parquet(path))

    def _set_statements(self, record, file_name: str, statements: Iterable[Statement]) -> None:
        with self._lock:
            record_dir = self._record_dir(record)
            if not record_dir.is_dir():
                raise InvalidRecord(f"Unknown record: {record.id}", record.id)
            self._write_statements(record_dir / file_name, statements)

    def get_initial_version(self) -> int:
        return self._initial_version

    def get_references(self) -> List[RepositoryReference]:
        references = []
        for record_dir in sorted(self._templates_path.iterdir()):
            if not record_dir.is_dir():
                continue
            record_file = record_dir / self.RECORD_FILE
            if record_file.exists():
                try:
                    with open(record_file, encoding="utf-8") as f:
                        data = json.load(f)
                    references.append(RepositoryReference(
                        record_dir.name, TemplateType(data.get("type", "reference"))))
                except (ValueError, OSError) as e:
                    logger.error(f"Ignoring unreadable record {record_dir.name}: {e}")
            elif (record_dir / self.INTERFACE_FILE).exists():
                # Records written before record.json existed are references.
                references.append(RepositoryReference.reference(record_dir.name))
        return references

    def reserve_reference_id(self) -> str:
        with self._lock:
            while (self._templates_path / str(self._next_id)).exists():
                self._next_id += 1
            record_id = str(self._next_id)
            self._next_id += 1
            self._save_meta()
            self._write_json(
                self._templates_path / record_id / self.RECORD_FILE,
                {"id": record_id, "type": TemplateType.REFERENCE.value},
            )
            return record_id

    def store_bundled(
        self,
        record_id: str,
        interface: Iterable[Statement],
        configuration: Iterable[Statement],
        description: Iterable[Statement],
    ) -> RepositoryReference:
        reference = RepositoryReference.bundled(record_id)
        with self._lock:
            record_dir = self._record_dir(reference)
            record_dir.mkdir(parents=True, exist_ok=True)
            self._write_statements(record_dir / self.INTERFACE_FILE, interface)
            self._write_statements(record_dir / self.CONFIGURATION_FILE, configuration)
            self._write_statements(record_dir / self.DESCRIPTION_FILE, description)
            self._write_json(
                record_dir / self.RECORD_FILE,
                {"id": record_id, "type": TemplateType.BUNDLED.value},
            )
        return reference

    def get_interface(self, record) -> List[Statement]:
        return self._read_statements(record, self.INTERFACE_FILE)

    def set_interface(self, record, statements: Iterable[Statement]) -> None:
        self._set_statements(record, self.INTERFACE_FILE, statements)

    def get_config(self, record) -> List[Statement]:
        return self._read_statements(record, self.CONFIGURATION_FILE)

    def set_config(self, record, statements: Iterable[Statement]) -> None:
        self._set_statements(record, self.CONFIGURATION_FILE, statements)

    def get_description(self, record) -> List[Statement]:
        return self._read_statements(record, self.DESCRIPTION_FILE)

    def set_description(self, record, statements: Iterable[Statement]) -> None:
        self._set_statements(record, self.DESCRIPTION_FILE, statements)

    def remove(self, record) -> None:
        with self._lock:
            record_dir = self._record_dir(record)
            if record_dir.exists():
                shutil.rmtree(record_dir)

    def update_finished(self) -> None:
        with self._lock:
            self._version = LATEST_VERSION
            self._save_meta()

    @property
    def version(self) -> int:
        """Schema version currently persisted."""
        return self._version
