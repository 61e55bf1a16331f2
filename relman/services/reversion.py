"""Rewrite the metadata of an already built Debian package.

A reversioned package carries the same payload as its source with a new
version, optionally a new name, and a new distribution channel. The source
archive is never touched: the package is unpacked into a scratch directory,
its `DEBIAN/control` and changelog are rewritten, and a new archive named
`<name>_<version>.deb` is built next to the source.

The work runs as a fixed sequence of stages:

    validated -> extracted -> metadata_patched -> repacked -> done

A failure at any stage is final for that call and is reported with the stage
name. Re-running is always safe because the source archive is left as is and
the scratch directory is removed on return.
"""

from __future__ import annotations

import asyncio
import gzip
import shutil
import tempfile
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path

from relman.core.config import CHANGELOG_MAINTAINER
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.core.stages import Stage, run_stages
from relman.output.console import ConsoleProtocol
from relman.platform.process import CommandRunner
from relman.platform.process import run as run_process

__all__ = [
    "ControlPatch",
    "PackageReversioner",
    "ReversionRequest",
    "patch_control",
    "validate_request",
    "VALIDATED",
    "EXTRACTED",
    "METADATA_PATCHED",
    "REPACKED",
]

VALIDATED = "validated"
EXTRACTED = "extracted"
METADATA_PATCHED = "metadata_patched"
REPACKED = "repacked"

CHANGELOG_NAMES = ("changelog.Debian.gz", "changelog.gz")


@dataclass(frozen=True, slots=True)
class ReversionRequest:
    """What to reversion and into what.

    Attributes:
        deb_path: Source archive; never modified.
        package_name: Current package name (as in the control file).
        source_version: Version string to replace inside the Version field.
        new_version: Replacement version.
        suite: Channel the source was published to (e.g. "unstable").
        new_suite: Channel the new package targets (e.g. "stable").
        new_name: Replacement package name, if the package is renamed.
    """

    deb_path: Path
    package_name: str
    source_version: str
    new_version: str
    suite: str
    new_suite: str
    new_name: str | None = None

    @property
    def final_name(self) -> str:
        return self.new_name or self.package_name

    @property
    def output_path(self) -> Path:
        ext = self.deb_path.suffix or ".deb"
        return self.deb_path.parent / f"{self.final_name}_{self.new_version}{ext}"


@dataclass(frozen=True, slots=True)
class ControlPatch:
    content: str
    changed: tuple[str, ...]

    @property
    def modified(self) -> bool:
        return bool(self.changed)


def _is_continuation(line: str) -> bool:
    return line[:1] in (" ", "\t")


def patch_control(
    content: str,
    *,
    package_name: str,
    source_version: str,
    new_version: str,
    new_suite: str | None = None,
    new_name: str | None = None,
) -> ControlPatch:
    """Rewrite the touched fields of a control file, leaving the rest verbatim.

    - `Package: <package_name>` is replaced only as an exact line, and only
      when `new_name` is given.
    - Inside the `Version:` line, the literal `source_version` is replaced by
      `new_version`; the substring is never touched anywhere else.
    - The `Distribution:` line is set to `new_suite` (appended when missing).
    - Trailing whitespace is stripped from every line and the result ends in
      exactly one newline.

    Continuation lines (starting with a space or tab) are never rewritten.
    """
    lines = content.split("\n")
    changed: list[str] = []
    seen_version = False
    seen_distribution = False

    for i, line in enumerate(lines):
        if _is_continuation(line):
            continue

        if new_name and line.rstrip() == f"Package: {package_name}":
            lines[i] = f"Package: {new_name}"
            if new_name != package_name:
                changed.append("Package")
        elif line.startswith("Version:") and not seen_version:
            seen_version = True
            key, _, value = line.partition(":")
            if source_version in value:
                lines[i] = f"{key}:{value.replace(source_version, new_version)}"
                if lines[i] != line:
                    changed.append("Version")
        elif line.startswith("Distribution:") and new_suite:
            seen_distribution = True
            lines[i] = f"Distribution: {new_suite}"
            if lines[i].rstrip() != line.rstrip():
                changed.append("Distribution")

    lines = [line.rstrip() for line in lines]
    while lines and not lines[-1]:
        lines.pop()

    if new_suite and not seen_distribution:
        lines.append(f"Distribution: {new_suite}")
        changed.append("Distribution")

    return ControlPatch(content="\n".join(lines) + "\n", changed=tuple(changed))


def validate_request(request: ReversionRequest) -> ReleaseError | None:
    if not request.deb_path.is_file():
        return ReleaseError(
            kind="validation",
            message=f"source package does not exist: {request.deb_path}",
        )
    for label, value in (
        ("package name", request.package_name),
        ("source version", request.source_version),
        ("new version", request.new_version),
    ):
        if not value.strip():
            return ReleaseError(kind="validation", message=f"{label} cannot be empty")
    if request.new_name is not None and not request.new_name.strip():
        return ReleaseError(kind="validation", message="new package name cannot be empty")
    if request.output_path.resolve() == request.deb_path.resolve():
        return ReleaseError(
            kind="validation",
            message=f"reversioned package would overwrite its source: {request.deb_path}",
            hint="change the version or the package name",
        )
    return None


def changelog_entry(request: ReversionRequest, *, maintainer: str, when: datetime) -> str:
    stamp = when.strftime("%a, %d %b %Y %H:%M:%S +0000")
    return (
        f"{request.final_name} ({request.new_version}) {request.new_suite}; urgency=medium\n"
        "\n"
        f"  * Reversion from {request.source_version} to {request.new_version}\n"
        "  * Automated reversion by relman\n"
        "\n"
        f" -- {maintainer}  {stamp}\n"
        "\n"
    )


def _gzip_replace(plain: Path) -> Path:
    """Compress `plain` into `<plain>.gz` like `gzip -9nf` and drop the original."""
    target = plain.with_name(f"{plain.name}.gz")
    with plain.open("rb") as src, target.open("wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, compresslevel=9, mtime=0) as dst:
            shutil.copyfileobj(src, dst)
    plain.unlink()
    return target


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class _Progress:
    request: ReversionRequest
    cleanup: ExitStack
    extract_dir: Path | None = None
    output: Path | None = None


class PackageReversioner:
    """Produces reversioned copies of Debian packages."""

    def __init__(
        self,
        *,
        console: ConsoleProtocol,
        runner: CommandRunner = run_process,
        maintainer: str = CHANGELOG_MAINTAINER,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._console = console
        self._run = runner
        self._maintainer = maintainer
        self._clock = clock

    async def reversion(self, request: ReversionRequest) -> Result[Path, ReleaseError]:
        """Build the reversioned package and return its path."""
        self._console.header(f"Reversioning {request.package_name}")
        self._console.step(f"source: {request.package_name} v{request.source_version}")
        self._console.step(f"target: {request.final_name} v{request.new_version}")
        self._console.step(f"suite: {request.suite} -> {request.new_suite}")

        with ExitStack() as cleanup:
            outcome = await run_stages(
                initial_state=_Progress(request=request, cleanup=cleanup),
                stages=[
                    Stage(VALIDATED, self._validate),
                    Stage(EXTRACTED, self._extract),
                    Stage(METADATA_PATCHED, self._patch),
                    Stage(REPACKED, self._repack),
                ],
            )

        if isinstance(outcome, Err):
            return outcome
        output = outcome.value.output
        assert output is not None
        self._console.success(f"reversion completed: {output}")
        return Ok(output)

    async def _validate(self, state: _Progress) -> Result[_Progress, ReleaseError]:
        error = validate_request(state.request)
        if error is not None:
            return Err(error)
        return Ok(state)

    async def _extract(self, state: _Progress) -> Result[_Progress, ReleaseError]:
        workdir = Path(
            state.cleanup.enter_context(tempfile.TemporaryDirectory(prefix="relman-reversion-"))
        )
        extract_dir = workdir / "extracted"
        extract_dir.mkdir()

        self._console.step(f"extracting {state.request.deb_path}")
        result = await self._run(["dpkg-deb", "-R", str(state.request.deb_path), str(extract_dir)])
        if isinstance(result, Err):
            return Err(ReleaseError.from_process("dpkg-deb extraction failed", result.error))
        return Ok(replace(state, extract_dir=extract_dir))

    async def _patch(self, state: _Progress) -> Result[_Progress, ReleaseError]:
        assert state.extract_dir is not None
        request = state.request
        control = state.extract_dir / "DEBIAN" / "control"
        if not control.is_file():
            return Err(ReleaseError(kind="not_found", message=f"control file not found: {control}"))

        self._console.step(f"patching {control.relative_to(state.extract_dir)}")
        try:
            patched = patch_control(
                control.read_text(encoding="utf-8"),
                package_name=request.package_name,
                source_version=request.source_version,
                new_version=request.new_version,
                new_suite=request.new_suite,
                new_name=request.new_name,
            )
            control.write_text(patched.content, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return Err(ReleaseError(kind="io", message=f"cannot rewrite {control}", hint=str(e)))

        if not patched.modified:
            self._console.warning("no modifications made to control file")

        await self._rewrite_changelog(state.extract_dir, request)
        return Ok(state)

    async def _rewrite_changelog(self, extract_dir: Path, request: ReversionRequest) -> None:
        doc_root = extract_dir / "usr" / "share" / "doc"
        source_doc = doc_root / request.package_name
        if not any((source_doc / name).exists() for name in CHANGELOG_NAMES):
            return

        target_doc = doc_root / request.final_name
        self._console.step(f"updating changelog in {target_doc.relative_to(extract_dir)}")
        entry = changelog_entry(request, maintainer=self._maintainer, when=self._clock())
        try:
            target_doc.mkdir(parents=True, exist_ok=True)
            plain = target_doc / "changelog.Debian"
            plain.write_text(entry, encoding="utf-8")
            await asyncio.to_thread(_gzip_replace, plain)
        except OSError as e:
            self._console.warning(f"could not update changelog: {e}")

    async def _repack(self, state: _Progress) -> Result[_Progress, ReleaseError]:
        assert state.extract_dir is not None
        output = state.request.output_path

        try:
            output.unlink(missing_ok=True)
        except OSError as e:
            return Err(ReleaseError(kind="io", message=f"cannot replace {output}", hint=str(e)))

        self._console.step(f"building {output}")
        result = await self._run(["dpkg-deb", "--build", str(state.extract_dir), str(output)])
        if isinstance(result, Err):
            return Err(ReleaseError.from_process("dpkg-deb build failed", result.error))

        if not output.is_file():
            return Err(
                ReleaseError(kind="not_found", message=f"new package was not created: {output}")
            )
        return Ok(replace(state, output=output))

