"""
Pytest configuration.

Puts the repo root on sys.path so the flat modules import without installing.
"""

import os
import sys

import pytest
from bs4 import BeautifulSoup

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture
def soup():
    """Parse an HTML snippet the same way the fetcher does."""
    def _parse(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")
    return _parse
