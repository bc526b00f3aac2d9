"""
Pytest Configuration and Fixtures
"""

import sys
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Callable, Generator, Union

import pytest
from openpyxl import Workbook

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from aster_core.metadata import UploadedFile  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_upload() -> Callable[[str, Union[str, bytes]], UploadedFile]:
    """Factory for in-memory uploaded files."""
    def _make(name: str, payload: Union[str, bytes]) -> UploadedFile:
        return UploadedFile.from_bytes(name, payload)
    return _make


@pytest.fixture
def sample_csv() -> str:
    return (
        "name,age,city,active,joined\n"
        "Alice,30,Paris,true,2023-01-15\n"
        "Bob,25,Lyon,false,2022-11-02\n"
        "\"Smith, Carol\",41,Paris,true,2021-06-30\n"
    )


@pytest.fixture
def sample_markdown() -> str:
    return """Preamble line before any heading.

# Overview

Quarterly results for the [finance team](https://example.com/finance).

![chart](images/q1.png)

## Revenue

- Product A
- Product B
  - Variant B1

1. First step
2. Second step

```python
# not a heading
print("hello")
```

## Costs

Costs stayed flat.
"""


@pytest.fixture
def sample_json() -> str:
    return '[{"id": 1, "name": "alpha", "active": true}, {"id": 2, "name": "beta", "active": false}]'


@pytest.fixture
def xlsx_bytes() -> bytes:
    """Three-sheet workbook (one empty) with a formula on the first sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"
    ws.append(["Region", "Sales", "Units"])
    ws.append(["North", 1200.5, 10])
    ws.append(["South", 800, 7])
    ws.append(["East", 950, 9])
    ws["D1"] = "Total"
    ws["D2"] = "=B2*C2"

    summary = wb.create_sheet("Summary")
    summary.append(["Metric", "Value"])
    summary.append(["Total sales", 2950.5])

    wb.create_sheet("Empty")

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
