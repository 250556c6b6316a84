"""Root test configuration: shared content-tree helpers and a fake external converter"""

import shlex
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

from sitepub.config import Settings


FAKE_ASCIIDOCTOR = textwrap.dedent('''\
    """Stand-in for asciidoctor: passthrough blocks verbatim, other lines as <p>."""
    import html
    import sys
    import time

    log = sys.argv[1]
    if "--version" in sys.argv:
        print("Asciidoctor 2.0.20 [fake]")
        sys.exit(0)
    text = sys.stdin.read()
    with open(log, "a", encoding="utf-8") as f:
        f.write("convert\\n")
    if "SLEEP" in text:
        time.sleep(30)
    if "MALFORMED" in text:
        print("asciidoctor: ERROR: <stdin>: line 1: malformed block", file=sys.stderr)
        sys.exit(1)
    out, passthrough = [], False
    for line in text.splitlines():
        if line.strip() == "++++":
            passthrough = not passthrough
        elif passthrough:
            out.append(line)
        elif line.strip() and not line.startswith(("=", ":")):
            out.append("<p>" + html.escape(line) + "</p>")
    sys.stdout.write("\\n".join(out) + "\\n")
''')


@dataclass
class FakeAsciidoctor:
    command: str
    log: Path

    def count(self) -> int:
        """Number of conversions the fake has performed."""
        return len(self.log.read_text().splitlines()) if self.log.exists() else 0


@pytest.fixture(name="content")
def content_fixture(tmp_path):
    root = tmp_path / "content"
    root.mkdir()
    return root


@pytest.fixture(name="write")
def write_fixture(content):
    """write({rel_path: text}) creates files under the content root and returns it."""
    def _write(files: dict[str, str]) -> Path:
        for rel, text in files.items():
            path = content / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return content
    return _write


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    """Settings isolated under tmp_path with the in-process markdown converter."""
    return Settings(
        output_dir=str(tmp_path / "public"),
        cache_dir=str(tmp_path / ".cache"),
        concurrency=2,
        conversion_timeout=10,
    )


@pytest.fixture(name="fake_adoc")
def fake_adoc_fixture(tmp_path):
    """A fake asciidoctor run by the current interpreter; logs one line per conversion."""
    script = tmp_path / "fake_asciidoctor.py"
    script.write_text(FAKE_ASCIIDOCTOR, encoding="utf-8")
    log = tmp_path / "adoc.log"
    command = " ".join(shlex.quote(str(p)) for p in (sys.executable, script, log))
    return FakeAsciidoctor(command=command, log=log)
