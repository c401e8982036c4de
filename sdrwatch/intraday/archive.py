"""Decode slice archives into ordered trade records.

A published slice is a ZIP archive holding one or more tabular members
(CSV or XLSX).  Rows from every tabular member are concatenated in archive
order and tagged with the slice id and member name.

Decoding is all-or-nothing: if any tabular member fails to parse, the whole
archive is rejected with ArchiveDecodeError so the slice is held back and
retried later instead of being applied with a partial row set.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from typing import Iterable

from openpyxl import load_workbook

from sdrwatch.intraday.base import TradeRecord
from sdrwatch.intraday.exceptions import ArchiveDecodeError

logger = logging.getLogger("sdrwatch.intraday.archive")

DEFAULT_TABULAR_EXTENSIONS: tuple[str, ...] = (".csv", ".xlsx")


def decode_archive(
    payload: bytes,
    slice_id: int,
    tabular_extensions: Iterable[str] = DEFAULT_TABULAR_EXTENSIONS,
) -> list[TradeRecord]:
    """Decode a slice archive into records.

    Args:
        payload:            Raw archive bytes as downloaded.
        slice_id:           Id to tag every record with.
        tabular_extensions: Member suffixes to decode (others are skipped).

    Returns:
        Records from all tabular members, in archive then row order.
        Empty if the archive holds no tabular members or no rows.

    Raises:
        ArchiveDecodeError: If the payload is not a ZIP archive, or any
            tabular member cannot be decoded.
    """
    extensions = tuple(e.lower() for e in tabular_extensions)
    try:
        archive = zipfile.ZipFile(io.BytesIO(payload))
    except (zipfile.BadZipFile, ValueError) as exc:
        raise ArchiveDecodeError(f"Slice {slice_id} is not a valid archive: {exc}") from exc

    records: list[TradeRecord] = []
    with archive:
        members = [
            info.filename
            for info in archive.infolist()
            if not info.is_dir() and info.filename.lower().endswith(extensions)
        ]
        if not members:
            logger.info("Slice %d archive has no tabular members", slice_id)
            return []

        for member in members:
            try:
                data = archive.read(member)
                if member.lower().endswith(".xlsx"):
                    rows = parse_xlsx(data)
                else:
                    rows = parse_csv(data)
            except ArchiveDecodeError:
                raise
            except Exception as exc:
                raise ArchiveDecodeError(
                    f"Failed to decode {member} in slice {slice_id}: {exc}", member=member
                ) from exc

            records.extend(
                TradeRecord(slice_id=slice_id, source_file=member, fields=row) for row in rows
            )
            logger.debug("Slice %d: %s → %d rows", slice_id, member, len(rows))

    return records


def parse_csv(data: bytes) -> list[dict[str, str]]:
    """Parse a CSV file with a header row.

    Blank rows are dropped; short rows are padded with empty strings.

    Raises:
        ArchiveDecodeError: If the bytes are not valid UTF-8 or the CSV is malformed.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ArchiveDecodeError(f"CSV is not valid UTF-8: {exc}") from exc

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    try:
        header = next(reader, None)
        if not header:
            return []
        columns = [h.strip() for h in header]
        rows: list[dict[str, str]] = []
        for raw in reader:
            if not any(cell.strip() for cell in raw):
                continue
            cells = raw + [""] * (len(columns) - len(raw))
            rows.append(dict(zip(columns, cells)))
    except csv.Error as exc:
        raise ArchiveDecodeError(f"Malformed CSV at line {reader.line_num}: {exc}") from exc
    return rows


def parse_xlsx(data: bytes) -> list[dict[str, str]]:
    """Parse the first worksheet of an XLSX workbook, first row as header."""
    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        if not workbook.sheetnames:
            return []
        sheet = workbook[workbook.sheetnames[0]]
        rows_iter = sheet.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            return []
        columns = ["" if h is None else str(h).strip() for h in header]
        rows: list[dict[str, str]] = []
        for raw in rows_iter:
            cells = ["" if v is None else str(v) for v in raw]
            if not any(c.strip() for c in cells):
                continue
            cells += [""] * (len(columns) - len(cells))
            rows.append(dict(zip(columns, cells)))
        return rows
    finally:
        workbook.close()
