"""Dependency graph: include/image reference scanning, cycle detection, build order.

Edges point from a node to the nodes it depends on. Node ids are:

    posts/a.md            a Document (relative source path)
    posts/img/fig.png     an asset: a referenced image or raw include partial
    page:tags/x.html      an assembled page (post listing, tag index)

Documents are scanned for references without being rendered.
"""

import heapq
import logging
import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from sitepub.core.errors import CyclicDependencyError
from sitepub.core.models import Document


logger = logging.getLogger(__name__)

PAGE_PREFIX = 'page:'

INCLUDE_RE = re.compile(r'^include::(?P<target>[^\[\s]+)\[[^\]]*\][ \t]*$', re.MULTILINE)
IMAGE_RES: dict[str, list[re.Pattern]] = {
    'markdown': [re.compile(r'!\[[^\]]*\]\(\s*<?(?P<target>[^)\s>]+)>?(?:\s+"[^"]*")?\s*\)')],
    'asciidoc': [re.compile(r'image::?(?P<target>[^\[\s]+)\[')],
}
URL_RE = re.compile(r'^([a-z][a-z0-9+.-]*:|//|#)', re.IGNORECASE)


class NodeKind(str, Enum):
    document = "document"
    asset = "asset"
    page = "page"


class _Mark(Enum):
    unvisited = 0
    in_progress = 1
    done = 2


def resolve_reference(doc_path: str, target: str) -> Optional[str]:
    """Resolve a reference relative to the referencing document. None for URLs or paths outside the root."""
    if URL_RE.match(target):
        return None
    if target.startswith('/'):
        resolved = posixpath.normpath(target.lstrip('/'))
    else:
        resolved = posixpath.normpath(posixpath.join(posixpath.dirname(doc_path), target))
    if resolved == '.' or resolved.startswith('../') or resolved == '..':
        return None
    return resolved


def scan_references(doc: Document) -> tuple[list[str], list[str]]:
    """Return (include_targets, image_targets) declared by a document, as raw strings in order."""
    includes = [m.group('target') for m in INCLUDE_RE.finditer(doc.body)]
    images = [m.group('target') for rx in IMAGE_RES.get(doc.dialect, []) for m in rx.finditer(doc.body)]
    return includes, list(dict.fromkeys(images))


@dataclass
class DependencyGraph:
    root:      Path
    documents: dict[str, Document] = field(default_factory=dict)
    kinds:     dict[str, NodeKind] = field(default_factory=dict)
    edges:     dict[str, set[str]] = field(default_factory=dict)
    includes:  dict[str, list[str]] = field(default_factory=dict)   # doc -> resolved include targets
    missing:   dict[str, list[str]] = field(default_factory=dict)   # doc -> unresolvable references

    def add_node(self, node: str, kind: NodeKind) -> None:
        self.kinds.setdefault(node, kind)
        self.edges.setdefault(node, set())

    def add_edge(self, node: str, dependency: str) -> None:
        self.edges.setdefault(node, set()).add(dependency)

    def add_page(self, page: str, dependencies: Iterable[str]) -> str:
        """Register an assembled page depending on the given nodes. Returns its node id."""
        node = page if page.startswith(PAGE_PREFIX) else PAGE_PREFIX + page
        self.add_node(node, NodeKind.page)
        for dep in dependencies:
            self.add_edge(node, dep)
        return node

    def kind(self, node: str) -> NodeKind:
        return self.kinds[node]

    def nodes(self, kind: Optional[NodeKind] = None) -> list[str]:
        return sorted(n for n, k in self.kinds.items() if kind is None or k == kind)

    def dependencies(self, node: str) -> list[str]:
        return sorted(self.edges.get(node, ()))

    def dependents(self, node: str) -> list[str]:
        return sorted(n for n, deps in self.edges.items() if node in deps)

    def transitive_dependencies(self, node: str) -> set[str]:
        seen: set[str] = set()
        stack = list(self.edges.get(node, ()))
        while stack:
            dep = stack.pop()
            if dep not in seen:
                seen.add(dep)
                stack.extend(self.edges.get(dep, ()))
        return seen

    def asset_path(self, node: str) -> Path:
        return self.root / node

    def images(self) -> set[str]:
        """Asset nodes referenced as images (not as raw includes) by some document."""
        return {
            dep
            for node, deps in self.edges.items() if self.kinds.get(node) == NodeKind.document
            for dep in deps
            if self.kinds.get(dep) == NodeKind.asset and dep not in self.includes.get(node, ())
        }

    def check_acyclic(self) -> None:
        """Three-color depth-first search; a back-edge to an in-progress node is a cycle."""
        marks = {node: _Mark.unvisited for node in self.edges}
        stack: list[str] = []

        def visit(node: str) -> None:
            marks[node] = _Mark.in_progress
            stack.append(node)
            for dep in sorted(self.edges.get(node, ())):
                state = marks.get(dep, _Mark.unvisited)
                if state == _Mark.in_progress:
                    raise CyclicDependencyError(stack[stack.index(dep):] + [dep])
                if state == _Mark.unvisited:
                    visit(dep)
            stack.pop()
            marks[node] = _Mark.done

        for node in sorted(self.edges):
            if marks[node] == _Mark.unvisited:
                visit(node)

    def topological_order(self) -> list[str]:
        """Dependencies before dependents; ties broken by node id. Raises CyclicDependencyError."""
        self.check_acyclic()
        pending = {node: len(deps) for node, deps in self.edges.items()}
        dependents: dict[str, list[str]] = {node: [] for node in self.edges}
        for node, deps in self.edges.items():
            for dep in deps:
                dependents.setdefault(dep, []).append(node)
                pending.setdefault(dep, 0)

        ready = [node for node, count in pending.items() if count == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in dependents.get(node, ()):
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, dependent)
        return order


def build_graph(documents: Iterable[Document], root: Path) -> DependencyGraph:
    """Scan every document's includes and images into a validated DependencyGraph."""
    graph = DependencyGraph(root=Path(root))
    docs = {doc.path: doc for doc in documents}
    graph.documents = docs
    for path in sorted(docs):
        graph.add_node(path, NodeKind.document)

    for path in sorted(docs):
        doc = docs[path]
        includes, images = scan_references(doc)
        resolved_includes = []
        for target in includes:
            resolved = resolve_reference(path, target)
            if resolved is None or (resolved not in docs and not (graph.root / resolved).is_file()):
                graph.missing.setdefault(path, []).append(target)
                continue
            if resolved not in docs:
                graph.add_node(resolved, NodeKind.asset)
            graph.add_edge(path, resolved)
            resolved_includes.append(resolved)
        graph.includes[path] = resolved_includes

        for target in images:
            resolved = resolve_reference(path, target)
            if resolved is None:
                continue
            if not (graph.root / resolved).is_file():
                # Diagram back-ends generate some images during conversion.
                logger.debug("Image %s referenced by %s not found in source tree", target, path)
                continue
            graph.add_node(resolved, NodeKind.asset)
            graph.add_edge(path, resolved)

    graph.check_acyclic()
    return graph
