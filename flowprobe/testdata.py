# flowprobe/testdata.py
"""CSV test-data tables. One row is sampled per test execution."""

from __future__ import annotations

import csv
import io
import logging
import random
from typing import Any, Dict, List, Optional

from flowprobe.errors import TestDataError
from flowprobe.files import resolve_path
from flowprobe.models import TestData

logger = logging.getLogger(__name__)


def parse_csv(testdata: TestData, workflow_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Read the table declared by `testdata` into a list of rows."""
    if testdata.content is not None:
        text = testdata.content
    elif testdata.file:
        path = resolve_path(testdata.file, workflow_path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise TestDataError(f"Cannot read test data file {path}: {e}") from e
    else:
        raise TestDataError("testdata needs either 'content' or 'file'")

    opts = testdata.options
    reader = csv.reader(io.StringIO(text), delimiter=opts.delimiter, quotechar=opts.quotechar)
    rows = [r for r in reader if r]

    if not opts.headers:
        return [{str(i): v for i, v in enumerate(r)} for r in rows]
    if not rows:
        return []

    header, body = rows[0], rows[1:]
    return [dict(zip(header, r)) for r in body]


def sample_row(testdata: Optional[TestData], workflow_path: Optional[str] = None) -> Dict[str, Any]:
    """Pick one row uniformly at random; empty mapping when no table is declared."""
    if testdata is None:
        return {}
    rows = parse_csv(testdata, workflow_path)
    if not rows:
        logger.warning("Test data table is empty")
        return {}
    return random.choice(rows)
