"""Error taxonomy for the build pipeline.

Fatal errors abort the build before the published output is touched.
Per-document errors are recorded in the build report and only affect the
final exit code.
"""


class SitepubError(Exception):
    """Base class for all pipeline errors."""
    fatal: bool = False


class ScanError(SitepubError):
    """The content root is missing or unreadable."""
    fatal = True


class CyclicDependencyError(SitepubError):
    """Includes or page references form a cycle."""
    fatal = True

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class ConverterUnavailableError(SitepubError):
    """A converter's external tool is missing; the whole dialect is unusable."""
    fatal = True


class PathCollisionError(SitepubError):
    """Two sources map to the same output path."""
    fatal = True

    def __init__(self, path: str, owners: tuple[str, str]) -> None:
        self.path = path
        self.owners = owners
        super().__init__(f"Output path {path!r} claimed by both {owners[0]!r} and {owners[1]!r}")


class UnsupportedDialectError(SitepubError):
    """No converter is registered for a document's markup dialect."""


class ConversionError(SitepubError):
    """A converter rejected its input (malformed markup, bad metadata, missing include)."""


class ConversionTimeoutError(ConversionError):
    """A conversion exceeded the per-document timeout and was terminated."""
