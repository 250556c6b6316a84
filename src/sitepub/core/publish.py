"""Stage-then-swap output writer.

The published path is a symlink into ``<parent>/.<name>.builds/``. A build is
written to a fresh directory there, then a temporary symlink pointing at it
replaces the published one with a single os.replace(), so readers always see
either the previous complete build or the new one.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path

from sitepub.core.assemble import SiteTree


logger = logging.getLogger(__name__)


class OutputWriter:
    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir).absolute()
        self.builds_dir = self.output_dir.parent / f".{self.output_dir.name}.builds"

    def stage(self, tree: SiteTree) -> Path:
        """Write the full tree into a new build directory. Removes it again on any failure."""
        self.builds_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix="build-", dir=self.builds_dir))
        try:
            for rel, content in tree.items():
                dest = staging / rel
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(content)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        os.chmod(staging, 0o755)
        return staging

    def _adopt_legacy_dir(self) -> None:
        """Move a plain directory at output_dir into the builds area so it can be swapped."""
        if self.output_dir.is_dir() and not self.output_dir.is_symlink():
            legacy = Path(tempfile.mkdtemp(prefix="legacy-", dir=self.builds_dir))
            legacy.rmdir()
            logger.info("Moving existing %s to %s before first swap", self.output_dir, legacy)
            os.rename(self.output_dir, legacy)
            os.symlink(os.path.relpath(legacy, self.output_dir.parent), self.output_dir)
        elif self.output_dir.exists() and not self.output_dir.is_symlink():
            raise FileExistsError(f"Output path exists and is not a directory: {self.output_dir}")

    def swap(self, build: Path) -> None:
        """Atomically point output_dir at build."""
        self._adopt_legacy_dir()
        link_tmp = self.output_dir.parent / f".{self.output_dir.name}.link-{build.name}"
        if link_tmp.is_symlink() or link_tmp.exists():
            link_tmp.unlink()
        os.symlink(os.path.relpath(build, self.output_dir.parent), link_tmp)
        try:
            os.replace(link_tmp, self.output_dir)
        except BaseException:
            link_tmp.unlink(missing_ok=True)
            raise

    def prune(self, keep: Path) -> None:
        """Remove every build directory except keep."""
        for entry in self.builds_dir.iterdir():
            if entry.resolve() != keep.resolve():
                shutil.rmtree(entry, ignore_errors=True)

    def write(self, tree: SiteTree) -> Path:
        """Stage, swap and prune. Returns the newly published build directory."""
        build = self.stage(tree)
        try:
            self.swap(build)
        except BaseException:
            shutil.rmtree(build, ignore_errors=True)
            raise
        self.prune(build)
        logger.info("Published %d file(s) to %s", len(tree), self.output_dir)
        return build
