"""Data models shared across the build pipeline"""

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from sitepub.core.utils.hashing import sha256_bytes
from sitepub.core.utils.slug import slugify


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


class DocumentMeta(BaseModel):
    """Declared metadata; unknown keys are kept so they reach the fingerprint."""
    model_config = ConfigDict(extra="allow")

    title:   str = ""
    date:    Optional[dt.date] = None
    tags:    list[str] = []
    slug:    Optional[str] = None
    draft:   bool = False
    related: list[str] = []
    markup:  Optional[str] = None   # dialect override, e.g. 'asciidoc'

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, str) and len(value) > 10:
            return value[:10]   # '2024-01-15T10:30:00' -> '2024-01-15'
        return value

    @field_validator("tags", "related", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return value


@dataclass(frozen=True)
class Document:
    """A source document as discovered by the reader; immutable during a build."""
    path:       str             # POSIX path relative to the content root (identity)
    source:     Path            # absolute filesystem path
    content:    bytes           # raw file content, front matter included
    body:       str             # text handed to the converter (front matter stripped)
    dialect:    str
    meta:       DocumentMeta
    mtime:      float
    meta_error: Optional[str] = None

    @property
    def content_hash(self) -> str:
        return sha256_bytes(self.content)

    @property
    def slug(self) -> str:
        return self.meta.slug or slugify(PurePosixPath(self.path).stem)

    @property
    def title(self) -> str:
        return self.meta.title or PurePosixPath(self.path).stem

    @property
    def publish(self) -> bool:
        """Partials (leading '_') and drafts are converted but never published as pages."""
        return not self.meta.draft and not PurePosixPath(self.path).name.startswith("_")

    @property
    def permalink(self) -> str:
        """Output path mirroring the source directory: <dir>/<slug>.html"""
        return str(PurePosixPath(self.path).parent / f"{self.slug}.html")


@dataclass(frozen=True)
class Artifact:
    """Rendered HTML fragment keyed by fingerprint."""
    fingerprint: str
    html:        str
    cached:      bool = False


class DocState(str, Enum):
    discovered    = "discovered"
    fingerprinted = "fingerprinted"
    cache_hit     = "cache_hit"
    converting    = "converting"
    converted     = "converted"
    failed        = "failed"
    skipped       = "skipped"
    assembled     = "assembled"     # page nodes only


SUCCEEDED = (DocState.cache_hit, DocState.converted, DocState.assembled)


@dataclass
class DocumentRecord:
    path:    str
    state:   DocState
    cause:   Optional[str] = None   # exception class name for failed/skipped
    message: str = ""


@dataclass
class BuildReport:
    """Accumulates per-document outcomes and warnings for one build."""
    records:     dict[str, DocumentRecord] = field(default_factory=dict)
    pages:       dict[str, DocumentRecord] = field(default_factory=dict)
    warnings:    list[str] = field(default_factory=list)
    conversions: int = 0           # actual converter invocations
    fatal:       Optional[str] = None

    def mark(
        self,
        path: str,
        state: DocState,
        error: Optional[BaseException] = None,
        message: str = "",
        ) -> DocumentRecord:
        """Set the state of a document, recording the cause for failures and skips."""
        record = DocumentRecord(
            path=path,
            state=state,
            cause=type(error).__name__ if error is not None else None,
            message=message or (str(error) if error is not None else ""),
        )
        self.records[path] = record
        return record

    def mark_page(self, page: str, state: DocState, message: str = "") -> None:
        self.pages[page] = DocumentRecord(path=page, state=state, message=message)

    def state_of(self, path: str) -> Optional[DocState]:
        record = self.records.get(path)
        return record.state if record else None

    def by_state(self, *states: DocState) -> list[DocumentRecord]:
        return [r for _, r in sorted(self.records.items()) if r.state in states]

    @property
    def failed(self) -> list[DocumentRecord]:
        return self.by_state(DocState.failed)

    def exit_code(self, continue_on_error: bool = False) -> int:
        if self.fatal:
            return EXIT_FATAL
        if self.failed and not continue_on_error:
            return EXIT_FAILED
        return EXIT_OK

    def summary_lines(self) -> list[str]:
        """Human-readable per-document outcome listing, printed after every build."""
        lines = []
        for record in sorted(self.records.values(), key=lambda r: r.path):
            line = f"  {record.state.value}: {record.path}"
            if record.cause:
                line += f" ({record.cause}: {record.message})"
            elif record.message:
                line += f" ({record.message})"
            lines.append(line)
        for record in sorted(self.pages.values(), key=lambda r: r.path):
            if record.state == DocState.skipped:
                lines.append(f"  skipped page: {record.path} ({record.message})")
        for warning in self.warnings:
            lines.append(f"  warning: {warning}")
        succeeded = len(self.by_state(*SUCCEEDED))
        skipped = len(self.by_state(DocState.skipped))
        lines.append(
            f"Build {'aborted' if self.fatal else 'complete'} - "
            f"{succeeded} succeeded, "
            f"{skipped} skipped, "
            f"{len(self.failed)} failed "
            f"({self.conversions} converted)"
        )
        return lines
