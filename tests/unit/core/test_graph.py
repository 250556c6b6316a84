"""Unit tests for core/graph.py"""

import pytest

from sitepub.core.errors import CyclicDependencyError
from sitepub.core.graph import DependencyGraph, NodeKind, resolve_reference


@pytest.mark.parametrize("doc,target,expected", [
    ("posts/a.md", "b.md", "posts/b.md"),
    ("posts/a.md", "../shared/x.md", "shared/x.md"),
    ("posts/a.md", "/img/p.png", "img/p.png"),
    ("a.md", "../outside.md", None),
    ("a.md", "https://example.com/x.png", None),
    ("a.md", "#anchor", None),
])
def test_resolve_reference(doc, target, expected):
    """References resolve relative to the referencing document; URLs and escapes give None."""
    assert resolve_reference(doc, target) == expected


def test_build_graph_includes_and_images(graph, content):
    """Includes of documents, raw partials and existing images become edges."""
    (content / "img").mkdir()
    (content / "img" / "fig.png").write_bytes(b"\x89PNG")
    g = graph({
        "a.md": "Alpha\n",
        "_snippet.html": "<b>raw</b>\n",
        "b.md": "include::a.md[]\n\ninclude::_snippet.html[]\n\n![fig](img/fig.png)\n![gone](img/missing.png)\n",
    })
    assert g.dependencies("b.md") == ["_snippet.html", "a.md", "img/fig.png"]
    assert g.kind("a.md") == NodeKind.document
    assert g.kind("_snippet.html") == NodeKind.asset
    assert g.kind("img/fig.png") == NodeKind.asset
    assert g.includes["b.md"] == ["a.md", "_snippet.html"]
    assert g.dependents("a.md") == ["b.md"]
    assert "b.md" not in g.missing


def test_build_graph_records_missing_include(graph):
    """An include whose target does not exist is recorded, not raised."""
    g = graph({"a.md": "include::nowhere.md[]\n"})
    assert g.missing == {"a.md": ["nowhere.md"]}
    assert g.dependencies("a.md") == []


def test_include_must_be_whole_line(graph):
    """include:: inside a paragraph or code span is not a directive."""
    g = graph({"a.md": "B", "b.md": "see `include::a.md[]` here\n"})
    assert g.dependencies("b.md") == []


def test_build_graph_detects_cycle(graph):
    """A two-document include cycle raises CyclicDependencyError naming the cycle."""
    with pytest.raises(CyclicDependencyError) as exc:
        graph({"a.md": "include::b.md[]\n", "b.md": "include::a.md[]\n"})
    assert exc.value.cycle == ["a.md", "b.md", "a.md"]
    assert "a.md -> b.md -> a.md" in str(exc.value)


def test_self_include_is_a_cycle(graph):
    """A document including itself is a cycle."""
    with pytest.raises(CyclicDependencyError):
        graph({"a.md": "include::a.md[]\n"})


def test_topological_order_dependencies_first_lexical_ties(tmp_path):
    """Dependencies come before dependents; independent nodes are ordered by id."""
    g = DependencyGraph(root=tmp_path)
    for node in ("c.md", "b.md", "a.md", "z.md"):
        g.add_node(node, NodeKind.document)
    g.add_edge("a.md", "z.md")
    g.add_page("index.html", ["a.md", "b.md", "c.md"])
    assert g.topological_order() == ["b.md", "c.md", "z.md", "a.md", "page:index.html"]


def test_transitive_dependencies(tmp_path):
    """transitive_dependencies follows edges through intermediate nodes."""
    g = DependencyGraph(root=tmp_path)
    g.add_edge("a", "b")
    g.add_edge("b", "c")
    assert g.transitive_dependencies("a") == {"b", "c"}


def test_page_cycle_detected(tmp_path):
    """Cycles through page nodes are detected as well."""
    g = DependencyGraph(root=tmp_path)
    g.add_node("a.md", NodeKind.document)
    g.add_page("index.html", ["a.md"])
    g.add_edge("a.md", "page:index.html")
    with pytest.raises(CyclicDependencyError):
        g.topological_order()


def test_images_excludes_raw_includes(graph, content):
    """images() lists image assets but not raw include partials."""
    (content / "p.png").write_bytes(b"PNG")
    g = graph({
        "_snippet.html": "<b>raw</b>\n",
        "_part.md": "![p](p.png)\n",
        "post.md": "include::_part.md[]\n\ninclude::_snippet.html[]\n",
    })
    assert g.images() == {"p.png"}
    assert g.transitive_dependencies("post.md") == {"_part.md", "_snippet.html", "p.png"}
