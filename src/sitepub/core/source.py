"""Content discovery: front matter / header metadata and lazy document scanning"""

import logging
import re
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import yaml
from pydantic import ValidationError

from sitepub.core.errors import ScanError
from sitepub.core.models import Document, DocumentMeta


logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r'^---\s*\n(.*?)\n---\s*\n', re.DOTALL)
ADOC_TITLE_RE = re.compile(r'^=\s+(.+?)\s*$')
ADOC_ATTR_RE = re.compile(r'^:([\w-]+):\s*(.*?)\s*$')
MD_TITLE_RE = re.compile(r'^#\s+(.+?)\s*#*\s*$', re.MULTILINE)

DEFAULT_DIALECTS: dict[str, str] = {
    '.md':       'markdown',
    '.markdown': 'markdown',
    '.adoc':     'asciidoc',
    '.asciidoc': 'asciidoc',
}

# AsciiDoc header attribute -> metadata field
ADOC_ATTRS = {'revdate': 'date', 'date': 'date', 'tags': 'tags', 'slug': 'slug', 'description': 'description'}


def _strip_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return (frontmatter_dict, body) with YAML header removed."""
    m = FRONTMATTER_RE.match(text)
    if m:
        try:
            fm = yaml.safe_load(m.group(1)) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML frontmatter: {e}") from e
        if not isinstance(fm, dict):
            raise ValueError(f"Invalid YAML frontmatter: expected a mapping, got {type(fm).__name__}")
        return fm, text[m.end():]
    return {}, text


def _asciidoc_header(body: str) -> dict[str, Any]:
    """Read '= Title' and ':attr: value' lines from the AsciiDoc document header."""
    header: dict[str, Any] = {}
    for line in body.splitlines():
        if not line.strip():
            if header:
                break   # header ends at the first blank line after it started
            continue
        if line.startswith('//'):
            continue
        if (m := ADOC_TITLE_RE.match(line)) and 'title' not in header:
            header['title'] = m.group(1)
        elif m := ADOC_ATTR_RE.match(line):
            key = ADOC_ATTRS.get(m.group(1))
            if key:
                header[key] = m.group(2)
        else:
            break
    return header


def extract_metadata(text: str, dialect: str) -> tuple[dict[str, Any], str]:
    """Merge front matter with dialect-native header fields. Front matter wins."""
    frontmatter, body = _strip_frontmatter(text)
    data: dict[str, Any] = {}
    if dialect == 'asciidoc':
        data.update(_asciidoc_header(body))
    elif m := MD_TITLE_RE.search(body):
        data['title'] = m.group(1)
    data.update(frontmatter)
    return data, body


def read_document(path: Path, root: Path, dialects: Mapping[str, str] = DEFAULT_DIALECTS) -> Document:
    """Read one source file into a Document. Metadata problems are recorded, not raised."""
    content = path.read_bytes()
    text = content.decode('utf-8', errors='replace')
    dialect = dialects[path.suffix.lower()]
    meta_error: Optional[str] = None
    try:
        data, body = extract_metadata(text, dialect)
        meta = DocumentMeta(**data)
    except (ValueError, ValidationError) as e:
        meta_error = str(e)
        meta, body = DocumentMeta(), text
    if meta.markup:
        dialect = meta.markup
    return Document(
        path=path.relative_to(root).as_posix(),
        source=path,
        content=content,
        body=body,
        dialect=dialect,
        meta=meta,
        mtime=path.stat().st_mtime,
        meta_error=meta_error,
    )


class SourceReader:
    """Lazy, restartable scan of a content root. Each iteration rescans the tree."""

    def __init__(self, root: Path, dialects: Mapping[str, str] = DEFAULT_DIALECTS) -> None:
        self.root = Path(root)
        self.dialects = dict(dialects)

    def _check_root(self) -> Path:
        root = self.root.resolve()
        if not root.exists():
            raise ScanError(f"Content root does not exist: {self.root}")
        if not root.is_dir():
            raise ScanError(f"Content root is not a directory: {self.root}")
        try:
            next(root.iterdir(), None)
        except OSError as e:
            raise ScanError(f"Content root is unreadable: {self.root}: {e}") from e
        return root

    def discover(self) -> list[Path]:
        """Return sorted content files under the root, skipping hidden paths and other extensions."""
        root = self._check_root()
        try:
            files = [
                p for p in root.rglob('*')
                if p.is_file()
                and p.suffix.lower() in self.dialects
                and not any(part.startswith('.') for part in p.relative_to(root).parts)
            ]
        except OSError as e:
            raise ScanError(f"Failed to scan {self.root}: {e}") from e
        return sorted(files)

    def __iter__(self) -> Iterator[Document]:
        root = self._check_root()
        for path in self.discover():
            try:
                doc = read_document(path, root, self.dialects)
            except OSError as e:
                raise ScanError(f"Failed to read {path}: {e}") from e
            if doc.meta_error:
                logger.warning("Invalid metadata in %s: %s", doc.path, doc.meta_error)
            yield doc
