"""Test fixtures for pytest.

This module re-exports the test models and tree-building helpers.
"""

from .models import Category, Department, Folder
from .trees import build_tree, intervals_of, persisted_ids

__all__ = [
    "Category",
    "Department",
    "Folder",
    "build_tree",
    "intervals_of",
    "persisted_ids",
]
