"""Unit tests for core/assemble.py"""

import pytest

from sitepub.core.assemble import PLACEHOLDER_URL, SiteAssembler, SiteTree
from sitepub.core.errors import PathCollisionError
from sitepub.core.models import Artifact


def _artifacts(*paths: str) -> dict[str, Artifact]:
    return {p: Artifact(fingerprint=p, html=f"<p>{p} body</p>\n") for p in paths}


FILES = {
    "posts/old.md": "---\ntitle: Old\ndate: 2023-01-01\ntags: [news]\n---\nOld\n",
    "posts/new.md": "---\ntitle: New\ndate: 2024-01-01\ntags: [news, tech]\nrelated: [old.md, gone.md]\n---\nNew\n",
    "undated.md": "# Undated\n",
    "_partial.md": "partial\n",
}


def test_plan_pages_registers_index_and_tags(graph):
    """The index depends on every published post; each tag page on its tagged posts."""
    g = graph(FILES)
    pages = SiteAssembler().plan_pages(g)
    assert pages["page:index.html"] == ["posts/new.md", "posts/old.md", "undated.md"]
    assert pages["page:tags/news.html"] == ["posts/new.md", "posts/old.md"]
    assert pages["page:tags/tech.html"] == ["posts/new.md"]


def test_assemble_full_site(graph):
    """Documents get layouts at their permalinks; index lists posts newest first."""
    g = graph(FILES)
    assembler = SiteAssembler(site_title="My Site")
    assembler.plan_pages(g)
    tree = assembler.assemble(_artifacts(*g.documents), g)

    assert sorted(tree.files) == [
        "index.html", "posts/new.html", "posts/old.html",
        "tags/news.html", "tags/tech.html", "undated.html",
    ]
    new = tree.files["posts/new.html"].decode()
    assert "<p>posts/new.md body</p>" in new
    assert '<a href="../tags/tech.html">tech</a>' in new
    assert '<a href="old.html">Old</a>' in new
    assert f'<a href="{PLACEHOLDER_URL}">gone.md</a>' in new
    assert tree.warnings == ["posts/new.md: unresolved related reference 'gone.md'"]

    index = tree.files["index.html"].decode()
    assert index.index("New") < index.index("Old") < index.index("Undated")
    assert '<a href="posts/new.html">' in index


def test_assemble_is_deterministic(graph):
    """Assembling the same artifacts twice gives byte-identical files."""
    g = graph(FILES)
    assembler = SiteAssembler()
    assembler.plan_pages(g)
    first = assembler.assemble(_artifacts(*g.documents), g)
    second = assembler.assemble(_artifacts(*g.documents), g)
    assert first.items() == second.items()


def test_assemble_skips_page_with_missing_artifact(graph):
    """A listing whose dependencies lack artifacts is skipped with a reason."""
    g = graph(FILES)
    assembler = SiteAssembler()
    assembler.plan_pages(g)
    tree = assembler.assemble(_artifacts("posts/new.md", "undated.md", "_partial.md"), g)
    assert "index.html" not in tree.files
    assert "tags/news.html" not in tree.files
    assert "tags/tech.html" in tree.files
    assert "posts/old.md" in tree.skipped["index.html"]


def test_assemble_copies_images(graph, content):
    """Referenced images are copied next to the pages that use them."""
    (content / "img").mkdir()
    (content / "img" / "p.png").write_bytes(b"PNG")
    g = graph({"a.md": "![p](img/p.png)\n"})
    tree = SiteAssembler().assemble(_artifacts("a.md"), g)
    assert tree.files["img/p.png"] == b"PNG"


def test_assemble_path_collision(graph):
    """Two documents with the same permalink raise PathCollisionError."""
    g = graph({"a.md": "---\nslug: same\n---\nA\n", "b.md": "---\nslug: same\n---\nB\n"})
    with pytest.raises(PathCollisionError, match="same.html"):
        SiteAssembler().assemble(_artifacts("a.md", "b.md"), g)


def test_site_tree_same_owner_may_readd():
    """The same owner can write a path twice; a different owner collides."""
    tree = SiteTree()
    tree.add("img/p.png", b"1", "img/p.png")
    tree.add("img/p.png", b"1", "img/p.png")
    with pytest.raises(PathCollisionError):
        tree.add("img/p.png", b"2", "other.md")


def test_templates_dir_overrides_layout(graph, tmp_path):
    """A page.html in templates_dir replaces the built-in document layout."""
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "page.html").write_text("CUSTOM {{ doc.title }}: {{ content | safe }}")
    g = graph({"a.md": "# A\n"})
    tree = SiteAssembler(templates_dir=templates).assemble(_artifacts("a.md"), g)
    assert tree.files["a.html"] == b"CUSTOM A: <p>a.md body</p>\n"


def test_assemble_copies_images_of_included_partials(graph, content):
    """Images referenced by an included partial are published with the including post."""
    (content / "fig.png").write_bytes(b"FIG")
    (content / "partials").mkdir()
    (content / "partials" / "chart.png").write_bytes(b"CHART")
    g = graph({
        "_part.md": "![fig](fig.png)\n",
        "partials/_nested.md": "![chart](chart.png)\n",
        "post.md": "include::_part.md[]\n\ninclude::partials/_nested.md[]\n",
    })
    tree = SiteAssembler().assemble(_artifacts(*g.documents), g)
    assert tree.files["fig.png"] == b"FIG"
    assert tree.files["partials/chart.png"] == b"CHART"
    assert "_part.html" not in tree.files


def test_assemble_skips_images_of_unpublished_only(graph, content):
    """An image used only by a draft is not published."""
    (content / "secret.png").write_bytes(b"S")
    g = graph({"draft.md": "---\ndraft: true\n---\n![s](secret.png)\n", "post.md": "P\n"})
    tree = SiteAssembler().assemble(_artifacts(*g.documents), g)
    assert "secret.png" not in tree.files
