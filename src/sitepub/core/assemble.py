"""Site assembly: layouts, permalinks, post/tag indices and related-post links.

Pages are rendered in dependency order so an index page is produced only
after every document it lists has an artifact. Output is deterministic:
the same artifacts always produce byte-identical files.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Mapping, Optional

from jinja2 import ChoiceLoader, DictLoader, Environment, FileSystemLoader, select_autoescape

from sitepub.core.errors import PathCollisionError
from sitepub.core.graph import PAGE_PREFIX, DependencyGraph, NodeKind, resolve_reference
from sitepub.core.models import Artifact, Document
from sitepub.core.utils.slug import slugify


logger = logging.getLogger(__name__)

PLACEHOLDER_URL = "#unresolved"

DEFAULT_TEMPLATES = {
    "base.html": """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{% block title %}{{ site.title }}{% endblock %}</title>
</head>
<body>
<header><a href="{{ root }}index.html">{{ site.title }}</a></header>
<main>
{% block content %}{% endblock %}
</main>
</body>
</html>
""",
    "page.html": """\
{% extends "base.html" %}
{% block title %}{{ doc.title }} | {{ site.title }}{% endblock %}
{% block content %}
<article>
<h1>{{ doc.title }}</h1>
{% if doc.meta.date %}<time datetime="{{ doc.meta.date.isoformat() }}">{{ doc.meta.date.isoformat() }}</time>{% endif %}
{% if tags %}<ul class="tags">{% for tag in tags %}<li><a href="{{ tag.url }}">{{ tag.name }}</a></li>{% endfor %}</ul>{% endif %}
{{ content | safe }}
{% if related %}
<aside class="related">
<h2>Related</h2>
<ul>{% for link in related %}<li><a href="{{ link.url }}">{{ link.title }}</a></li>{% endfor %}</ul>
</aside>
{% endif %}
</article>
{% endblock %}
""",
    "index.html": """\
{% extends "base.html" %}
{% block content %}
<h1>{{ site.title }}</h1>
<ul class="posts">
{% for post in posts %}<li>{% if post.date %}<time>{{ post.date }}</time> {% endif %}<a href="{{ post.url }}">{{ post.title }}</a></li>
{% endfor %}</ul>
{% endblock %}
""",
    "tag.html": """\
{% extends "base.html" %}
{% block title %}{{ tag }} | {{ site.title }}{% endblock %}
{% block content %}
<h1>Posts tagged “{{ tag }}”</h1>
<ul class="posts">
{% for post in posts %}<li>{% if post.date %}<time>{{ post.date }}</time> {% endif %}<a href="{{ post.url }}">{{ post.title }}</a></li>
{% endfor %}</ul>
{% endblock %}
""",
}


@dataclass
class SiteTree:
    """Ordered, deduplicated output files plus assembly diagnostics."""
    files:    dict[str, bytes] = field(default_factory=dict)
    owners:   dict[str, str] = field(default_factory=dict)
    skipped:  dict[str, str] = field(default_factory=dict)   # page -> reason
    warnings: list[str] = field(default_factory=list)

    def add(self, path: str, content: bytes, owner: str) -> None:
        """Add an output file. The same owner may re-add a path; a different owner collides."""
        previous = self.owners.get(path)
        if previous is not None and previous != owner:
            raise PathCollisionError(path, (previous, owner))
        self.owners[path] = owner
        self.files[path] = content

    def items(self) -> list[tuple[str, bytes]]:
        return sorted(self.files.items())

    def __len__(self) -> int:
        return len(self.files)


def _relative_url(from_page: str, to_path: str) -> str:
    """Relative link from one output file to another."""
    start = posixpath.dirname(from_page) or "."
    return posixpath.relpath(to_path, start)


def _root_prefix(page: str) -> str:
    depth = len(PurePosixPath(page).parent.parts)
    return "../" * depth


def tag_page(tag: str) -> str:
    return f"tags/{slugify(tag)}.html"


class SiteAssembler:
    def __init__(self, site_title: str = "Blog", templates_dir: Optional[Path] = None) -> None:
        loaders = [DictLoader(DEFAULT_TEMPLATES)]
        if templates_dir:
            loaders.insert(0, FileSystemLoader(str(templates_dir)))
        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=True,
        )
        self.site = {"title": site_title}

    def plan_pages(self, graph: DependencyGraph, eligible: Optional[set[str]] = None) -> dict[str, list[str]]:
        """Register index pages on the graph. Returns page node -> contributing documents.

        eligible limits which documents can appear in listings (e.g. excludes
        unsupported dialects); defaults to every published document.
        """
        posts = [
            path for path, doc in sorted(graph.documents.items())
            if doc.publish and (eligible is None or path in eligible)
        ]
        pages = {graph.add_page("index.html", posts): posts}
        by_tag: dict[str, list[str]] = {}
        for path in posts:
            for tag in graph.documents[path].meta.tags:
                by_tag.setdefault(tag, []).append(path)
        for tag, paths in sorted(by_tag.items()):
            node = graph.add_page(tag_page(tag), paths)
            pages[node] = graph.dependencies(node)
        return pages

    def _post_entry(self, doc: Document, from_page: str) -> dict:
        return {
            "title": doc.title,
            "date": doc.meta.date.isoformat() if doc.meta.date else "",
            "url": _relative_url(from_page, doc.permalink),
        }

    def _sorted_posts(self, docs: list[Document]) -> list[Document]:
        """Newest first; undated posts last; path breaks ties."""
        dated = sorted((d for d in docs if d.meta.date), key=lambda d: d.path)
        dated.sort(key=lambda d: d.meta.date, reverse=True)
        undated = sorted((d for d in docs if not d.meta.date), key=lambda d: d.path)
        return dated + undated

    def _related_links(self, doc: Document, graph: DependencyGraph, artifacts, tree: SiteTree) -> list[dict]:
        links = []
        for ref in doc.meta.related:
            target = resolve_reference(doc.path, ref)
            other = graph.documents.get(target) if target else None
            if other is None or not other.publish or target not in artifacts:
                message = f"{doc.path}: unresolved related reference {ref!r}"
                logger.warning(message)
                tree.warnings.append(message)
                links.append({"title": ref, "url": PLACEHOLDER_URL})
                continue
            links.append({"title": other.title, "url": _relative_url(doc.permalink, other.permalink)})
        return links

    def render_document(self, doc: Document, artifact: Artifact, graph: DependencyGraph, artifacts, tree: SiteTree) -> str:
        page = doc.permalink
        layout = (doc.meta.model_extra or {}).get("layout", "page.html")
        template = self.env.get_template(layout)
        return template.render(
            site=self.site,
            root=_root_prefix(page),
            doc=doc,
            content=artifact.html,
            tags=[{"name": t, "url": _relative_url(page, tag_page(t))} for t in doc.meta.tags],
            related=self._related_links(doc, graph, artifacts, tree),
        )

    def render_listing(self, page: str, docs: list[Document]) -> str:
        if page == "index.html":
            template, extra = self.env.get_template("index.html"), {}
        else:
            tag = next(
                (t for d in docs for t in d.meta.tags if tag_page(t) == page),
                PurePosixPath(page).stem,
            )
            template, extra = self.env.get_template("tag.html"), {"tag": tag}
        return template.render(
            site=self.site,
            root=_root_prefix(page),
            posts=[self._post_entry(d, page) for d in self._sorted_posts(docs)],
            **extra,
        )

    def assemble(
        self,
        artifacts: Mapping[str, Artifact],
        graph: DependencyGraph,
        order: Optional[list[str]] = None,
        ) -> SiteTree:
        """Apply layouts in dependency order. Raises PathCollisionError on ambiguous output paths."""
        tree = SiteTree()
        images = graph.images()
        for node in order or graph.topological_order():
            kind = graph.kind(node)
            if kind == NodeKind.document:
                doc = graph.documents[node]
                if not doc.publish or node not in artifacts:
                    continue
                html = self.render_document(doc, artifacts[node], graph, artifacts, tree)
                tree.add(doc.permalink, html.encode("utf-8"), node)
                for image in sorted(graph.transitive_dependencies(node) & images):
                    tree.add(image, graph.asset_path(image).read_bytes(), image)
            elif kind == NodeKind.page:
                page = node[len(PAGE_PREFIX):]
                deps = graph.dependencies(node)
                blocked = [d for d in deps if d not in artifacts]
                if blocked:
                    reason = f"depends on unbuilt document(s): {', '.join(blocked)}"
                    logger.warning("Skipping page %s: %s", page, reason)
                    tree.skipped[page] = reason
                    continue
                html = self.render_listing(page, [graph.documents[d] for d in deps])
                tree.add(page, html.encode("utf-8"), node)
        return tree
