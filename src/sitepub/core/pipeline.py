"""Build orchestration: scan -> graph -> fingerprint -> convert -> assemble -> publish.

Every document becomes an asyncio task that first awaits the tasks of the
documents it includes, then asks the cache for its artifact. Conversions are
bounded by the context's limiter and a per-document timeout. Fatal errors
propagate before the output directory is touched; per-document errors are
recorded on the report and only influence the exit code.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sitepub.cache.store import BuildCache
from sitepub.config import Settings
from sitepub.core.assemble import SiteAssembler, SiteTree
from sitepub.core.convert import ConverterRegistry
from sitepub.core.errors import (
    ConversionError,
    ConversionTimeoutError,
    SitepubError,
    UnsupportedDialectError,
)
from sitepub.core.fingerprint import compute_fingerprints
from sitepub.core.graph import PAGE_PREFIX, DependencyGraph, NodeKind, build_graph
from sitepub.core.models import Artifact, BuildReport, DocState
from sitepub.core.publish import OutputWriter
from sitepub.core.source import SourceReader


logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """Everything a build stage needs; passed explicitly, never stored globally."""
    settings:   Settings
    cache:      BuildCache
    converters: ConverterRegistry
    assembler:  SiteAssembler
    limiter:    asyncio.Semaphore
    report:     BuildReport = field(default_factory=BuildReport)

    @classmethod
    def from_settings(cls, settings: Settings, converters: Optional[ConverterRegistry] = None) -> "BuildContext":
        return cls(
            settings=settings,
            cache=BuildCache.open(Path(settings.cache_dir), settings.cache_max_bytes),
            converters=converters or ConverterRegistry.from_settings(settings),
            assembler=SiteAssembler(
                settings.site_title,
                Path(settings.templates_dir) if settings.templates_dir else None,
            ),
            limiter=asyncio.Semaphore(settings.concurrency),
        )


@dataclass
class BuildResult:
    report:    BuildReport
    tree:      Optional[SiteTree] = None
    published: Optional[Path] = None

    def exit_code(self, continue_on_error: bool = False) -> int:
        return self.report.exit_code(continue_on_error)


def plan(
    root: Path,
    converters: ConverterRegistry,
    assembler: SiteAssembler,
    report: BuildReport,
    ) -> tuple[DependencyGraph, list[str], set[str]]:
    """Scan and order the build. Returns (graph, topological order, convertible documents)."""
    documents = list(SourceReader(root))
    for doc in documents:
        report.mark(doc.path, DocState.discovered)
    logger.info("Discovered %d document(s) under %s", len(documents), root)

    graph = build_graph(documents, root)
    eligible = set()
    for path, doc in sorted(graph.documents.items()):
        if converters.supports(doc.dialect):
            eligible.add(path)
        else:
            error = UnsupportedDialectError(f"No converter for markup dialect {doc.dialect!r}")
            logger.warning("Skipping %s: %s", path, error)
            report.mark(path, DocState.skipped, error)

    assembler.plan_pages(graph, eligible)
    return graph, graph.topological_order(), eligible


class Pipeline:
    def __init__(self, context: BuildContext) -> None:
        self.ctx = context

    def plan(self, root: Path) -> tuple[DependencyGraph, list[str], set[str]]:
        return plan(root, self.ctx.converters, self.ctx.assembler, self.ctx.report)

    def _fingerprint(self, graph: DependencyGraph, order: list[str], eligible: set[str]) -> dict[str, str]:
        dialects = sorted({graph.documents[p].dialect for p in eligible})
        versions = {}
        for dialect in dialects:
            converter = self.ctx.converters.get(dialect)
            converter.check_available()
            versions[dialect] = converter.version
        fingerprints = compute_fingerprints(graph, versions, order)
        for path in sorted(eligible):
            if path in fingerprints:
                self.ctx.report.mark(path, DocState.fingerprinted)
        return fingerprints

    def _fail(self, path: str, error: BaseException) -> None:
        logger.warning("Failed %s: %s", path, error)
        self.ctx.report.mark(path, DocState.failed, error)

    async def _convert_one(
        self,
        path: str,
        graph: DependencyGraph,
        fingerprints: dict[str, str],
        tasks: dict[str, asyncio.Task],
        ) -> Optional[Artifact]:
        ctx, report = self.ctx, self.ctx.report
        if report.state_of(path) == DocState.skipped:
            return None
        doc = graph.documents[path]

        fragments: dict[str, str] = {}
        for dep in graph.dependencies(path):
            if graph.kind(dep) == NodeKind.document:
                artifact = await tasks[dep]
                if artifact is None:
                    report.mark(path, DocState.skipped, message=f"dependency {dep} was not built")
                    return None
                fragments[dep] = artifact.html
            elif dep in graph.includes.get(path, ()):
                fragments[dep] = graph.asset_path(dep).read_text(encoding="utf-8", errors="replace")

        if path in graph.missing:
            self._fail(path, ConversionError(f"include target(s) not found: {', '.join(graph.missing[path])}"))
            return None
        fingerprint = fingerprints.get(path)
        if fingerprint is None:
            report.mark(path, DocState.skipped, message="no fingerprint (unbuildable dependency)")
            return None

        converter = ctx.converters.get(doc.dialect)
        timeout = ctx.settings.conversion_timeout

        async def build() -> str:
            async with ctx.limiter:
                report.mark(path, DocState.converting)
                report.conversions += 1
                try:
                    return await asyncio.wait_for(converter.convert(doc, fragments), timeout)
                except asyncio.TimeoutError as e:
                    raise ConversionTimeoutError(f"conversion exceeded {timeout:g}s") from e

        try:
            artifact = await ctx.cache.get_or_build(fingerprint, build)
        except SitepubError as e:
            if e.fatal:
                raise
            self._fail(path, e)
            return None
        except Exception as e:
            logger.exception("Unexpected error converting %s", path)
            self._fail(path, e)
            return None

        report.mark(path, DocState.cache_hit if artifact.cached else DocState.converted)
        return artifact

    async def _convert_all(
        self,
        graph: DependencyGraph,
        order: list[str],
        fingerprints: dict[str, str],
        ) -> dict[str, Artifact]:
        """Schedule one task per document in dependency order; cancel everything on a fatal error."""
        tasks: dict[str, asyncio.Task] = {}
        for node in order:
            if graph.kind(node) == NodeKind.document:
                tasks[node] = asyncio.create_task(
                    self._convert_one(node, graph, fingerprints, tasks), name=f"convert:{node}",
                )
        try:
            results = await asyncio.gather(*tasks.values())
        except BaseException:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        return {path: artifact for path, artifact in zip(tasks, results) if artifact is not None}

    async def build(self, root: Path) -> BuildResult:
        """Run a full build. Raises the fatal SitepubError after recording it on the report."""
        ctx, report = self.ctx, self.ctx.report
        try:
            graph, order, eligible = self.plan(Path(root))
            fingerprints = self._fingerprint(graph, order, eligible)
            artifacts = await self._convert_all(graph, order, fingerprints)
            tree = ctx.assembler.assemble(artifacts, graph, order)
        except SitepubError as e:
            report.fatal = f"{type(e).__name__}: {e}"
            logger.error("Build aborted: %s", report.fatal)
            raise

        for node in graph.nodes(NodeKind.page):
            page = node[len(PAGE_PREFIX):]
            if page in tree.skipped:
                report.mark_page(page, DocState.skipped, tree.skipped[page])
            else:
                report.mark_page(page, DocState.assembled)
        report.warnings.extend(tree.warnings)

        try:
            published = OutputWriter(Path(ctx.settings.output_dir)).write(tree)
        except OSError as e:
            report.fatal = f"{type(e).__name__}: {e}"
            logger.error("Publish failed: %s", report.fatal)
            raise
        ctx.cache.evict(protected={a.fingerprint for a in artifacts.values()})
        return BuildResult(report=report, tree=tree, published=published)


def run_build(root: Path, settings: Settings, context: Optional[BuildContext] = None) -> BuildResult:
    """Synchronous entry point: build root with settings (or a prepared context)."""
    ctx = context or BuildContext.from_settings(settings)
    return asyncio.run(Pipeline(ctx).build(Path(root)))


def plan_build(root: Path, settings: Settings) -> list[str]:
    """Return the build order without converting anything. Raises on cycles or scan errors."""
    assembler = SiteAssembler(settings.site_title)
    _, order, _ = plan(Path(root), ConverterRegistry.from_settings(settings), assembler, BuildReport())
    return order
