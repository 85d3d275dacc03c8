#!/usr/bin/env python3
"""
CSV report of the finding ledger, one row per candidate in discovery order
"""

import csv
import pathlib
from datetime import datetime
from typing import Iterable, Optional

from auxiliary import file_stamp, format_bytes, format_timestamp
from finding_ledger import Candidate

REPORT_COLUMNS = ("Type", "Name", "Path", "Size", "SizeBytes", "Status", "Timestamp")


def report_row(candidate: Candidate) -> list:
    return [
        candidate.kind.value,
        candidate.identifier,
        candidate.location,
        format_bytes(candidate.size_bytes),
        candidate.size_bytes,
        candidate.status.value,
        format_timestamp(candidate.discovered_at),
    ]


def write_report(
    entries: Iterable[Candidate], output_dir: pathlib.Path, moment: Optional[datetime] = None
) -> Optional[pathlib.Path]:
    """Write the report and return its path; nothing is written for an empty ledger"""
    entries = list(entries)
    if not entries:
        return None

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"exaleipsis_report_{file_stamp(moment)}.csv"
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(REPORT_COLUMNS)
        for candidate in entries:
            writer.writerow(report_row(candidate))
    return path
