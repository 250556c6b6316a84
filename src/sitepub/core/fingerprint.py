"""Deterministic fingerprints over document content, metadata, converter and dependencies"""

import json
import posixpath
from typing import Mapping, Optional

from sitepub.core.graph import DependencyGraph, NodeKind
from sitepub.core.models import Document
from sitepub.core.utils.hashing import sha256, sha256_bytes


FINGERPRINT_VERSION = 2


def fingerprint_document(
    doc: Document,
    converter_version: str,
    dependencies: Mapping[str, str],
    missing: tuple[str, ...] = (),
    ) -> str:
    """Hash a canonical JSON payload; identical inputs always give the same 64-char digest.

    The source path only contributes its directory, and only for documents
    with dependencies.
    """
    payload = {
        "v": FINGERPRINT_VERSION,
        "content": doc.content_hash,
        "meta": doc.meta.model_dump(mode="json"),
        "meta_error": doc.meta_error,
        "dialect": doc.dialect,
        "converter": converter_version,
        "deps": sorted(dependencies.items()),
        # included fragments are rebased against the document directory
        "base": posixpath.dirname(doc.path) if dependencies else None,
        "missing": sorted(missing),
    }
    return sha256(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))


def fingerprint_asset(data: bytes) -> str:
    return sha256_bytes(data)


def compute_fingerprints(
    graph: DependencyGraph,
    converter_versions: Mapping[str, Optional[str]],
    order: Optional[list[str]] = None,
    ) -> dict[str, str]:
    """Fingerprint every document and asset in dependency order.

    converter_versions maps dialect -> version (None when the dialect is
    unsupported). Documents with an unsupported dialect, or depending on one,
    get no fingerprint.
    """
    fingerprints: dict[str, str] = {}
    for node in order or graph.topological_order():
        kind = graph.kind(node)
        if kind == NodeKind.asset:
            fingerprints[node] = fingerprint_asset(graph.asset_path(node).read_bytes())
        elif kind == NodeKind.document:
            doc = graph.documents[node]
            version = converter_versions.get(doc.dialect)
            deps = graph.dependencies(node)
            if version is None or any(dep not in fingerprints for dep in deps):
                continue
            fingerprints[node] = fingerprint_document(
                doc,
                version,
                {dep: fingerprints[dep] for dep in deps},
                tuple(graph.missing.get(node, ())),
            )
    return fingerprints
