"""Readers that turn results files into raw header/row string lists.

Cells are returned exactly as they appear in the file (no type conversion,
no NA handling); interpretation is left to ``TabularReconciler``.  Row
lengths are preserved so that malformed rows can be detected downstream.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

import pandas as pd

from ..errors import TableFormatError

logger = logging.getLogger(__name__)

MS_RUN_LOCATION = re.compile(r"^ms_run\[(\d+)\]-location$")


@dataclass
class Table:
    """Header plus data rows of a delimited file."""

    source: str
    header: List[str]
    rows: List[List[str]]


def read_table(path: Path, delimiter: Optional[str] = None) -> Table:
    """Read a CSV/TSV file.

    Args:
        path: File to read
        delimiter: Field separator; inferred from the suffix when omitted
            (``.csv`` -> comma, anything else -> tab)

    Raises:
        TableFormatError: If the file is empty or a row has more cells than
            the header.
    """
    path = Path(path)
    if delimiter is None:
        delimiter = "," if path.suffix.lower() == ".csv" else "\t"

    try:
        df = pd.read_csv(
            path, sep=delimiter, header=None, dtype=str, keep_default_na=False, encoding="utf-8"
        )
    except pd.errors.EmptyDataError:
        raise TableFormatError("file is empty", path.name) from None
    except pd.errors.ParserError as exc:
        raise TableFormatError(f"malformed row: {exc}", path.name) from exc

    # Short rows are padded with NaN; empty cells stay "" (keep_default_na=False)
    lines = [[cell for cell in line if isinstance(cell, str)] for line in df.values.tolist()]
    header, rows = lines[0], lines[1:]

    logger.debug("Read %s: %d columns, %d rows", path.name, len(header), len(rows))
    return Table(source=path.name, header=header, rows=rows)


@dataclass
class MzTabDocument:
    """Metadata and protein section of an mzTab file."""

    source: str
    ms_runs: Dict[int, str] = field(default_factory=dict)  # run index -> location
    protein_header: List[str] = field(default_factory=list)
    protein_rows: List[List[str]] = field(default_factory=list)

    @property
    def sample_names(self) -> List[str]:
        """Sample names derived from the run locations, in run order.

        ``file:///data/raw/S1.mzML`` becomes ``S1``.
        """
        names = []
        for index in sorted(self.ms_runs):
            location = self.ms_runs[index]
            if location.startswith("file://"):
                location = location[len("file://"):]
            name = PurePosixPath(location.replace("\\", "/")).name
            if "." in name:
                name = name[: name.rindex(".")]
            names.append(name)
        return names


def read_mztab(path: Path) -> MzTabDocument:
    """Read the metadata (MTD) and protein (PRH/PRT) sections of an mzTab file.

    Reading stops at the first line after the protein section that is not a
    protein row.  Comment (COM) and empty lines are ignored.
    """
    path = Path(path)
    document = MzTabDocument(source=path.name)

    with path.open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            fields = line.split("\t")
            prefix = fields[0]
            if prefix == "COM":
                continue

            if not document.protein_header:
                if prefix == "MTD" and len(fields) >= 3:
                    match = MS_RUN_LOCATION.match(fields[1])
                    if match:
                        document.ms_runs[int(match.group(1))] = fields[2]
                elif prefix == "PRH":
                    document.protein_header = fields
            elif prefix == "PRT":
                document.protein_rows.append(fields)
            else:
                break

    logger.debug(
        "Read %s: %d MS runs, %d protein rows",
        path.name,
        len(document.ms_runs),
        len(document.protein_rows),
    )
    return document
