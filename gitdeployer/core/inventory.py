"""CSV inventory ("source of truth") selection and revision updates.

The inventory is a CSV file with a mandatory header row.  Columns are looked
up by name, so their order does not matter and unknown columns are allowed.

Two operations matter to a rollout:

- ``select_clusters`` decides which clusters a rollout targets (group filter,
  then tag matching with "any" taking precedence over "all");
- ``update_revisions`` writes the new platform/workload revisions for one
  batch of clusters.

``update_revisions`` keeps every row it does not change byte-for-byte: the
raw text of each record is kept from the read and written back untouched.
The new file is written to a temporary file next to the original and moved
into place, so a failure before the move leaves the original intact.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from gitdeployer.errors import FieldsNotFoundError, InventoryFormatError
from gitdeployer.models.inventory import (
    CLUSTER_GROUP,
    CLUSTER_NAME,
    CLUSTER_TAGS,
    PLATFORM_REVISION,
    SELECTION_FIELDS,
    UPDATE_FIELDS,
    WORKLOAD_REVISION,
    InventoryRow,
    parse_tags,
)

logger = logging.getLogger(__name__)


def find_field_indices(header: list[str], *fields: str) -> dict[str, int]:
    """Map each requested field to its column index in ``header``.

    Raises ``FieldsNotFoundError`` naming every missing field, in the order
    requested.  An empty header is missing everything.
    """
    indices: dict[str, int] = {}
    missing: list[str] = []
    for field in fields:
        try:
            indices[field] = header.index(field)
        except ValueError:
            missing.append(field)
    if missing:
        raise FieldsNotFoundError(missing)
    return indices


@dataclass
class _Record:
    """One parsed CSV record and the exact text it was read from."""

    fields: list[str]
    raw: str
    line_number: int

    @property
    def is_blank(self) -> bool:
        return not self.fields

    @property
    def line_terminator(self) -> str:
        if self.raw.endswith("\r\n"):
            return "\r\n"
        if self.raw.endswith("\n"):
            return "\n"
        if self.raw.endswith("\r"):
            return "\r"
        return ""


class _LineRecorder:
    """Line iterator that remembers what ``csv.reader`` consumed."""

    def __init__(self, text: str) -> None:
        self._lines = io.StringIO(text, newline="")
        self.consumed: list[str] = []
        self.line_number = 0

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        line = self._lines.readline()
        if not line:
            raise StopIteration
        self.consumed.append(line)
        self.line_number += 1
        return line

    def take(self) -> str:
        raw = "".join(self.consumed)
        self.consumed = []
        return raw


def _read_records(path: Path) -> list[_Record]:
    # newline="" keeps each record's own line terminator
    with open(path, encoding="utf-8", newline="") as fh:
        text = fh.read()
    recorder = _LineRecorder(text)
    reader = csv.reader(recorder)
    records: list[_Record] = []
    while True:
        start = recorder.line_number + 1
        try:
            fields = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            raise InventoryFormatError(f"{path}: line {start}: {exc}") from exc
        records.append(_Record(fields=fields, raw=recorder.take(), line_number=start))
    return records


def _split_header(records: list[_Record]) -> tuple[list[str], list[_Record]]:
    for pos, record in enumerate(records):
        if not record.is_blank:
            return record.fields, records[pos + 1:]
    return [], []


def _cell(record: _Record, index: int, field: str) -> str:
    try:
        return record.fields[index]
    except IndexError:
        raise InventoryFormatError(
            f"line {record.line_number}: row has {len(record.fields)} columns, "
            f"missing {field!r}"
        ) from None


def _encode(fields: list[str], line_terminator: str) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator=line_terminator).writerow(fields)
    return buf.getvalue()


class InventoryStore:
    """Reads and updates one inventory file.

    Parameters
    ----------
    path:
        Path to the inventory CSV file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def select_clusters(
        self,
        cluster_group: str,
        match_any: list[str] | None = None,
        match_all: list[str] | None = None,
    ) -> list[str]:
        """Return the names of the clusters a rollout targets, in file order.

        Rows outside ``cluster_group`` are skipped.  When ``match_any`` is
        non-empty a row is kept iff it carries at least one of those tags;
        otherwise, when ``match_all`` is non-empty, iff it carries all of
        them; otherwise every row in the group is kept.  Names are not
        de-duplicated.
        """
        match_any = list(match_any or [])
        match_all = list(match_all or [])

        header, records = _split_header(_read_records(self.path))
        idx = find_field_indices(header, *SELECTION_FIELDS)

        selected: list[str] = []
        for record in records:
            if record.is_blank:
                continue
            if _cell(record, idx[CLUSTER_GROUP], CLUSTER_GROUP) != cluster_group:
                continue
            name = _cell(record, idx[CLUSTER_NAME], CLUSTER_NAME)
            if not match_any and not match_all:
                selected.append(name)
                continue

            row = InventoryRow(
                cluster_name=name,
                tags=parse_tags(_cell(record, idx[CLUSTER_TAGS], CLUSTER_TAGS)),
            )
            if match_any:
                if row.matches_any(match_any):
                    selected.append(name)
            elif row.matches_all(match_all):
                selected.append(name)

        logger.debug(
            "Selected %d cluster(s) from %s for group %s", len(selected), self.path, cluster_group
        )
        return selected

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def update_revisions(
        self,
        cluster_names: list[str],
        platform_revision: str = "",
        workload_revision: str = "",
    ) -> int:
        """Write new revisions for ``cluster_names`` and return the rows changed.

        Empty revisions leave the corresponding column untouched.  Rows not
        targeted, and rows whose values already match, keep their original
        bytes.
        """
        records = _read_records(self.path)
        header, data = _split_header(records)
        idx = find_field_indices(header, *UPDATE_FIELDS)

        targets = set(cluster_names)
        replacements: dict[int, str] = {}
        for record in data:
            if record.is_blank:
                continue
            if _cell(record, idx[CLUSTER_NAME], CLUSTER_NAME) not in targets:
                continue

            fields = list(record.fields)
            if platform_revision:
                _cell(record, idx[PLATFORM_REVISION], PLATFORM_REVISION)
                fields[idx[PLATFORM_REVISION]] = platform_revision
            if workload_revision:
                _cell(record, idx[WORKLOAD_REVISION], WORKLOAD_REVISION)
                fields[idx[WORKLOAD_REVISION]] = workload_revision
            if fields != record.fields:
                replacements[id(record)] = _encode(fields, record.line_terminator)

        if not replacements:
            logger.info("No revision changes to write to %s", self.path)
            return 0

        content = "".join(replacements.get(id(record), record.raw) for record in records)
        self._replace(content)
        logger.info("Updated revisions for %d row(s) in %s", len(replacements), self.path)
        return len(replacements)

    def _replace(self, content: str) -> None:
        """Write ``content`` to a sibling temp file and move it over the original."""
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
            shutil.copymode(self.path, tmp_path)
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise


# ----------------------------------------------------------------------
# Function forms
# ----------------------------------------------------------------------


def select_clusters(
    file_path: Path | str,
    cluster_group: str,
    match_any: list[str] | None = None,
    match_all: list[str] | None = None,
) -> list[str]:
    """Shorthand for ``InventoryStore(file_path).select_clusters(...)``."""
    return InventoryStore(file_path).select_clusters(cluster_group, match_any, match_all)


def update_revisions(
    file_path: Path | str,
    cluster_names: list[str],
    platform_revision: str = "",
    workload_revision: str = "",
) -> int:
    """Shorthand for ``InventoryStore(file_path).update_revisions(...)``."""
    return InventoryStore(file_path).update_revisions(
        cluster_names, platform_revision, workload_revision
    )
