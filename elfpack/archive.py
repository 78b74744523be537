"""Multi-architecture bundle: one tar entry per architecture package."""

import io
import json
import logging
import os
import tarfile
import time
from collections.abc import Sequence
from dataclasses import dataclass

from .config import PackagerConfig
from .errors import DuplicateArchitectureName
from .packager import ArchitecturePackage, PackageInput, package_all

log = logging.getLogger(__name__)

METADATA_NAME = "metadata.toml"
TAB_VERSION = 1


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    package: ArchitecturePackage


@dataclass(frozen=True)
class BuildResult:
    """Archive bytes plus the per-input packages that went into it."""

    archive: bytes
    entries: tuple[ArchiveEntry, ...]


def entry_name(package: ArchitecturePackage, package_name: str = "", extension: str = "tbf") -> str:
    """``<source>.<ext>``, or ``<package name>.<arch>.<ext>`` when a name is set."""
    base = f"{package_name}.{package.arch}" if package_name else package.source
    return f"{base}.{extension}"


def name_entries(
    packages: Sequence[ArchitecturePackage], package_name: str = "", extension: str = "tbf"
) -> list[ArchiveEntry]:
    return [
        ArchiveEntry(name=entry_name(p, package_name, extension), package=p)
        for p in packages
    ]


def render_metadata(package_name: str, build_date: str | None) -> bytes:
    """The bundle's metadata.toml; ``build_date`` is left out when None."""
    lines = [
        f"tab-version = {TAB_VERSION}",
        f"name = {json.dumps(package_name)}",
        'only-for-boards = ""',
    ]
    if build_date is not None:
        lines.append(f"build-date = {build_date}")
    return ("\n".join(lines) + "\n").encode("utf-8")


class ArchiveAssembler:
    """Serializes named packages into an uncompressed tar archive.

    In deterministic mode every entry gets a zero timestamp, root ownership
    and no owner names, and metadata.toml carries no build date, so equal
    inputs always produce equal archives.
    """

    def __init__(
        self,
        deterministic: bool = False,
        include_metadata: bool = False,
        package_name: str = "",
    ):
        self.deterministic = deterministic
        self.include_metadata = include_metadata
        self.package_name = package_name

    def _tarinfo(self, name: str, size: int, now: int) -> tarfile.TarInfo:
        info = tarfile.TarInfo(name)
        info.size = size
        info.mode = 0o644
        info.type = tarfile.REGTYPE
        if self.deterministic:
            info.mtime = 0
            info.uid = info.gid = 0
            info.uname = info.gname = ""
        else:
            info.mtime = now
            if hasattr(os, "getuid"):
                info.uid = os.getuid()
                info.gid = os.getgid()
        return info

    def assemble(self, entries: Sequence[ArchiveEntry]) -> bytes:
        if not entries:
            raise ValueError("An archive needs at least one package")

        seen: dict[str, ArchiveEntry] = {}
        for entry in entries:
            first = seen.get(entry.name)
            if first is not None:
                raise DuplicateArchitectureName(
                    f"Both {first.package.source} and {entry.package.source} "
                    f"map to archive entry {entry.name}",
                    source=entry.package.source,
                )
            seen[entry.name] = entry

        now = int(time.time())
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.GNU_FORMAT) as tar:
            if self.include_metadata:
                build_date = None
                if not self.deterministic:
                    build_date = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(now))
                metadata = render_metadata(self.package_name, build_date)
                tar.addfile(self._tarinfo(METADATA_NAME, len(metadata), now), io.BytesIO(metadata))

            for entry in entries:
                data = entry.package.to_bytes()
                tar.addfile(self._tarinfo(entry.name, len(data), now), io.BytesIO(data))
                log.debug("Added %s (%d bytes)", entry.name, len(data))

        return buf.getvalue()


def build_archive(
    inputs: Sequence[PackageInput], config: PackagerConfig, jobs: int = 1
) -> BuildResult:
    """Package every input and bundle the results, in input order."""
    packages = package_all(list(inputs), config, jobs=jobs)
    entries = name_entries(packages, config.package_name, config.extension)
    assembler = ArchiveAssembler(
        deterministic=config.deterministic,
        include_metadata=config.include_metadata,
        package_name=config.package_name,
    )
    archive = assembler.assemble(entries)
    log.info("Built archive with %d package(s), %d bytes", len(entries), len(archive))
    return BuildResult(archive=archive, entries=tuple(entries))
