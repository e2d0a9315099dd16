"""
Pytest configuration and fixtures.
"""

import copy
import io
import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import openpyxl
import pytest
import xlwt

from datavision.analysis_service import AnalysisService
from datavision.backend import Backend
from datavision.chat_support import ChatSupport
from datavision.session_cache import SessionCache


ENERGY_HEADERS = ["station", "unit", "pea_import", "pea_export"]


def build_xlsx(rows: List[List[Any]], title: str = "Readings", extra_sheets: Optional[Dict[str, List[List[Any]]]] = None) -> bytes:
    """Write `rows` into the first sheet of an in-memory workbook."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for name, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(name)
        for row in sheet_rows:
            extra.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


XLS_BLANK = object()
XLS_ERROR = object()


def build_xls(rows: List[List[Any]], title: str = "Readings") -> bytes:
    """Write `rows` into a legacy .xls workbook. None leaves the cell unwritten."""
    wb = xlwt.Workbook()
    ws = wb.add_sheet(title)
    date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD HH:MM:SS")
    for r, row in enumerate(rows):
        for c, value in enumerate(row):
            if value is None:
                continue
            if value is XLS_BLANK:
                ws.write(r, c, None)
            elif value is XLS_ERROR:
                ws.row(r).set_cell_error(c, "#DIV/0!")
            elif isinstance(value, datetime):
                ws.write(r, c, value, date_style)
            else:
                ws.write(r, c, value)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def energy_rows(count: int) -> List[List[Any]]:
    return [[f"ST-{i:02d}", float(i % 3), 100 + i, i * 2] for i in range(1, count + 1)]


class FakeChatLlm:
    """Stands in for ChatLlmClient: yields scripted fragments and records the messages it was sent."""

    def __init__(self, fragments=(), error: Exception | None = None, fail_after: int | None = None):
        self.fragments = list(fragments)
        self.error = error
        self.fail_after = fail_after
        self.calls: List[list] = []

    def stream(self, messages):
        self.calls.append(list(messages))
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error
            yield fragment
        if self.error is not None and self.fail_after is None:
            raise self.error

    def get_accrued_usage(self):
        return {}


def _option(level: int, title: str, technologies: List[str]) -> Dict[str, Any]:
    return {
        "level": level,
        "title": title,
        "description": f"{title} for meter reading data",
        "executiveBenefits": "Balance load and cut import costs",
        "operationalBenefits": "Alerts when a unit reading is empty",
        "technologies": technologies,
        "developmentTools": "Python, Power BI",
        "visualization": "Import vs export comparison",
        "concreteOutputs": [
            "Line Notify alert when unit is empty",
            "Dashboard comparing pea_import vs pea_export",
            "Heatmap of high-load stations",
        ],
    }


@pytest.fixture
def analysis_payload() -> Dict[str, Any]:
    """A well-formed four-tier analysis response."""
    return {
        "options": [
            _option(20, "Excel Validation Macro", ["Excel", "VBA"]),
            _option(50, "Power BI Energy Balance", ["Power BI", "Power Query"]),
            _option(70, "Web Dashboard with Alerts", ["React", "FastAPI", "PostgreSQL", "Line Notify"]),
            _option(100, "Energy Data Platform", ["Kafka", "Spark", "Grafana", "Grafana"]),
        ]
    }


@pytest.fixture
def fake_llm(analysis_payload) -> MagicMock:
    llm = MagicMock()
    llm.invoke_structured.return_value = json.dumps(analysis_payload)
    llm.get_accrued_usage.return_value = {}
    return llm


@pytest.fixture
def make_backend(fake_llm) -> Callable[..., Backend]:
    def factory(chat_llm=None, llm=None) -> Backend:
        return Backend(
            cache=SessionCache(ttl_seconds=3600),
            analysis_service=AnalysisService(llm=llm or fake_llm, temperature=0.5),
            chat_support=ChatSupport(chat_llm=chat_llm or FakeChatLlm(["Hel", "lo"])),
        )

    return factory


@pytest.fixture
def energy_workbook() -> bytes:
    """Four energy headers plus 12 data rows."""
    return build_xlsx([ENERGY_HEADERS] + energy_rows(12))


@pytest.fixture
def payload_copy(analysis_payload) -> Callable[[], Dict[str, Any]]:
    return lambda: copy.deepcopy(analysis_payload)
