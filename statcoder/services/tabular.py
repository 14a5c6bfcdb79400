"""
services/tabular.py
──────────────────────────────────────────────────────────────────────────────
Flat-file ingestion and export (CSV, Excel, OpenDocument).

Everything is read as text: codes like "0110" must keep their leading zeros,
so pandas type inference is switched off.  Empty cells become "", headers
are trimmed and fully blank rows are dropped.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from statcoder.domain.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

_EXCEL_ENGINES = {
    ".xlsx": "openpyxl",
    ".xls": "xlrd",
    ".ods": "odf",
}


def read_records(path: Path) -> list[dict[str, str]]:
    """Read the first sheet (or the CSV) at ``path`` into string records.

    Raises:
        ValidationError:    If the file is missing or its extension unsupported.
        ConfigurationError: If the spreadsheet engine for the extension is
                            not installed.
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix != ".csv" and suffix not in _EXCEL_ENGINES:
        raise ValidationError(
            f"Unsupported file type {suffix!r}; use .csv, .xlsx, .xls or .ods"
        )
    try:
        if suffix == ".csv":
            df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
        else:
            df = pd.read_excel(
                path,
                sheet_name=0,
                dtype=str,
                keep_default_na=False,
                engine=_EXCEL_ENGINES[suffix],
            )
    except pd.errors.EmptyDataError:
        logger.warning("%s is empty", path.name)
        return []
    except ImportError as exc:
        raise ConfigurationError(
            f"Reading {suffix} files requires the {_EXCEL_ENGINES.get(suffix)!r} package: {exc}"
        ) from exc

    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    df = df.apply(lambda col: col.astype(str).str.strip())
    df = df[(df != "").any(axis=1)]

    records = df.to_dict(orient="records")
    logger.info("Read %d record(s) from %s", len(records), path.name)
    return records


def write_records(records: Iterable[dict[str, Any]], path: Path) -> int:
    """Write records to CSV; returns the number of rows written."""
    df = pd.DataFrame(list(records))
    df.to_csv(path, index=False)
    logger.info("Wrote %d record(s) to %s", len(df), Path(path).name)
    return len(df)
