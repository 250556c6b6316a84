"""Converter adapters: one variant per markup dialect behind a uniform async interface.

Converters are black boxes: document text in, HTML fragment out. Includes are
spliced after rendering: each ``include::path[]`` line is swapped for a marker
that every dialect passes through verbatim, and the marker is then replaced by
the included fragment.
"""

import asyncio
import logging
import posixpath
import re
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import Mapping, Optional

from markdown_it import MarkdownIt

from sitepub.core.errors import ConversionError, ConverterUnavailableError, UnsupportedDialectError
from sitepub.core.graph import INCLUDE_RE, URL_RE, resolve_reference
from sitepub.core.models import Document


logger = logging.getLogger(__name__)

MARKER = "<!-- sitepub:include {index} -->"
# Blockquote markers and list indentation in front of a fence line
CONTAINER_PREFIX_RE = re.compile(r"^[ \t>]*")
SRC_ATTR_RE = re.compile(r'(\ssrc=")([^"]+)(")')


def rebase_fragment(html: str, from_dir: str, to_dir: str) -> str:
    """Rewrite relative src= paths in html written for from_dir so they work from to_dir."""
    if from_dir == to_dir:
        return html

    def _sub(m) -> str:
        url = m.group(2)
        if URL_RE.match(url) or url.startswith("/"):
            return m.group(0)
        target = posixpath.normpath(posixpath.join(from_dir, url))
        return m.group(1) + posixpath.relpath(target, to_dir or ".") + m.group(3)

    return SRC_ATTR_RE.sub(_sub, html)


class Converter(ABC):
    """Base adapter. Subclasses implement render() for their dialect."""
    dialect: str = ""

    @property
    @abstractmethod
    def version(self) -> str:
        """Identifying version folded into fingerprints (tool version + options)."""

    def check_available(self) -> None:
        """Raise ConverterUnavailableError when the backing tool is missing."""

    @abstractmethod
    async def render(self, text: str) -> str:
        """Render markup to an HTML fragment. Raises ConversionError on malformed input."""

    def validate(self, doc: Document) -> None:
        if doc.meta_error:
            raise ConversionError(f"{doc.path}: {doc.meta_error}")

    def marker_source(self, marker: str) -> str:
        """Source text that renders to exactly ``marker``."""
        return f"\n{marker}\n"

    def _splice_markers(self, doc: Document) -> tuple[str, dict[str, str]]:
        """Replace include lines with markers. Returns (text, marker -> resolved target)."""
        markers: dict[str, str] = {}

        def _sub(m) -> str:
            marker = MARKER.format(index=len(markers))
            markers[marker] = resolve_reference(doc.path, m.group('target')) or m.group('target')
            return self.marker_source(marker)

        return INCLUDE_RE.sub(_sub, doc.body), markers

    async def convert(self, doc: Document, fragments: Optional[Mapping[str, str]] = None) -> str:
        """Render a document and splice in the fragments of its includes."""
        self.validate(doc)
        fragments = fragments or {}
        text, markers = self._splice_markers(doc)
        html = await self.render(text)
        for marker, target in markers.items():
            if target not in fragments:
                raise ConversionError(f"{doc.path}: unresolved include {target!r}")
            fragment = rebase_fragment(
                fragments[target].rstrip("\n"),
                posixpath.dirname(target),
                posixpath.dirname(doc.path),
            )
            html = html.replace(marker, fragment)
        logger.debug("Converted %s with %s (%d include(s))", doc.path, self.dialect, len(markers))
        return html


class MarkdownConverter(Converter):
    """Lightweight dialect: in-process markdown-it, rendered in a worker thread."""
    dialect = "markdown"

    def __init__(self, preset: str = "gfm-like") -> None:
        self.preset = preset

    def _make_parser(self) -> MarkdownIt:
        """Build a MarkdownIt instance for the configured preset name."""
        return MarkdownIt(self.preset, options_update={"linkify": False, "html": True})

    @property
    def version(self) -> str:
        try:
            lib = package_version("markdown-it-py")
        except PackageNotFoundError:
            lib = "unknown"
        return f"markdown-it-py/{lib}/{self.preset}"

    def check_available(self) -> None:
        try:
            self._make_parser()
        except (KeyError, ValueError) as e:
            raise ConverterUnavailableError(f"Unknown markdown-it preset {self.preset!r}: {e}") from e

    def _render_sync(self, text: str) -> str:
        parser = self._make_parser()
        tokens = parser.parse(text)
        lines = text.splitlines()
        for tok in tokens:
            if tok.type != "fence" or not tok.map:
                continue
            start, end = tok.map
            closing = CONTAINER_PREFIX_RE.sub("", lines[end - 1]).rstrip() if end - 1 > start else ""
            if not closing.startswith(tok.markup):
                raise ConversionError(f"Unterminated fenced code block at line {start + 1}")
        return parser.renderer.render(tokens, parser.options, {})

    async def render(self, text: str) -> str:
        return await asyncio.to_thread(self._render_sync, text)


class AsciidocConverter(Converter):
    """Semantic dialect: external asciidoctor process, stdin -> stdout."""
    dialect = "asciidoc"
    ARGS = ("--embedded", "--backend", "html5", "--failure-level", "WARN", "--out-file", "-", "-")

    def __init__(self, command: str = "asciidoctor") -> None:
        self.command = shlex.split(command)
        self._version: Optional[str] = None

    def marker_source(self, marker: str) -> str:
        return f"\n++++\n{marker}\n++++\n"

    def check_available(self) -> None:
        if not self.command or shutil.which(self.command[0]) is None:
            raise ConverterUnavailableError(f"Converter executable not found: {' '.join(self.command)!r}")

    @property
    def version(self) -> str:
        if self._version is None:
            self.check_available()
            try:
                out = subprocess.run(
                    [*self.command, "--version"], capture_output=True, text=True, timeout=30, check=True,
                ).stdout
            except (OSError, subprocess.SubprocessError) as e:
                raise ConverterUnavailableError(f"Cannot query {self.command[0]} version: {e}") from e
            first = out.strip().splitlines()[0] if out.strip() else "unknown"
            self._version = f"{first}|{' '.join(self.command[1:])}"
        return self._version

    async def render(self, text: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command, *self.ARGS,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ConverterUnavailableError(f"Converter executable not found: {self.command[0]!r}") from e
        try:
            out, err = await proc.communicate(text.encode("utf-8"))
        except asyncio.CancelledError:
            # Timeout or build cancellation: never leave the child running.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        if proc.returncode != 0:
            detail = err.decode("utf-8", errors="replace").strip() or f"exit status {proc.returncode}"
            raise ConversionError(detail)
        return out.decode("utf-8")


class ConverterRegistry:
    """Dialect -> converter instance lookup for one build."""

    def __init__(self, converters: Mapping[str, Converter]) -> None:
        self._converters = dict(converters)

    @classmethod
    def from_settings(cls, settings) -> "ConverterRegistry":
        return cls({
            "markdown": MarkdownConverter(settings.markdown_preset),
            "asciidoc": AsciidocConverter(settings.asciidoctor_cmd),
        })

    def get(self, dialect: str) -> Converter:
        try:
            return self._converters[dialect]
        except KeyError:
            raise UnsupportedDialectError(f"No converter for markup dialect {dialect!r}") from None

    def supports(self, dialect: str) -> bool:
        return dialect in self._converters
