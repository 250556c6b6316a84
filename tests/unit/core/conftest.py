"""Shared fixtures for core unit tests"""

import pytest

from sitepub.core.graph import build_graph
from sitepub.core.source import SourceReader


@pytest.fixture(name="docs")
def docs_fixture(write):
    """docs({rel_path: text}) writes a content tree and returns {path: Document}."""
    def _docs(files: dict[str, str]) -> dict:
        root = write(files)
        return {doc.path: doc for doc in SourceReader(root)}
    return _docs


@pytest.fixture(name="graph")
def graph_fixture(write):
    """graph({rel_path: text}) writes a content tree and returns its DependencyGraph."""
    def _graph(files: dict[str, str]):
        root = write(files)
        return build_graph(SourceReader(root), root)
    return _graph
