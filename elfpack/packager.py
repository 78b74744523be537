"""Per-architecture packaging: ELF bytes in, header plus image out."""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass

from .config import PackagerConfig, get_arch
from .errors import PackagingError
from .header import Header, synthesize_header
from .image import build_image
from .reader import read_object
from .selector import SectionPolicy, select_sections

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageInput:
    """One compiled executable and the identifier it was loaded from."""

    source: str
    data: bytes


@dataclass(frozen=True)
class ArchitecturePackage:
    """Header and the bytes that follow it, for one target architecture.

    ``image`` holds everything after the header: padding up to the end of
    the protected region, the application bytes, then slot padding.
    """

    source: str
    arch: str
    header: Header
    image: bytes

    def __post_init__(self) -> None:
        expected = self.header.total_size - self.header.header_size
        if len(self.image) != expected:
            raise ValueError(
                f"{self.source}: image is {len(self.image)} bytes, header expects {expected}"
            )

    @property
    def protected_padding(self) -> int:
        layout = self.header.memory_layout
        if layout is None:
            return 0
        return layout.protected_region_size - self.header.header_size

    @property
    def application(self) -> bytes:
        """The loadable bytes, without protected-region or slot padding."""
        start = self.protected_padding
        return self.image[start:start + self.header.flash_length]

    def to_bytes(self) -> bytes:
        return self.header.to_bytes() + self.image


def package_object(source: str, data: bytes, config: PackagerConfig) -> ArchitecturePackage:
    """Run reader, selector, image builder and header synthesis for one input.

    Any PackagingError is re-raised with ``source`` set so the caller can
    tell which input failed.
    """
    try:
        obj = read_object(data)
        policy = SectionPolicy.from_markers(config.relocation_marker, config.persistent_marker)
        selection = select_sections(obj, policy)
        loadable = build_image(obj, selection)
        arch = get_arch(obj.machine, obj.elfclass)

        header = synthesize_header(
            config.memory,
            flash_length=len(loadable),
            regions=loadable.persistent_regions,
            ram_only_bytes=selection.ram_only_bytes,
            entry_offset=loadable.entry_offset,
            package_name=config.package_name,
            fixed_address=config.fixed_address,
            options=config.header,
            ram_alignment=arch.ram_alignment,
        )
    except PackagingError as e:
        e.source = source
        raise

    layout = header.memory_layout
    padding = layout.protected_region_size - header.header_size
    trailing = header.total_size - layout.protected_region_size - len(loadable)
    image = b"\x00" * padding + loadable.data + b"\x00" * trailing

    log.info(
        "Packaged %s (%s): %d application bytes, %d byte header, %d byte slot",
        source, arch.name, len(loadable), header.header_size, header.total_size,
    )
    return ArchitecturePackage(source=source, arch=arch.name, header=header, image=image)


def package_all(
    inputs: list[PackageInput], config: PackagerConfig, jobs: int = 1
) -> list[ArchitecturePackage]:
    """Package every input; results always come back in input order.

    With ``jobs > 1`` inputs are packaged in a process pool. The first
    failing input, in input order, is the one whose error is raised.
    """
    if jobs <= 1 or len(inputs) <= 1:
        return [package_object(i.source, i.data, config) for i in inputs]

    log.info("Packaging %d inputs with %d workers...", len(inputs), jobs)
    with ProcessPoolExecutor(max_workers=jobs) as executor:
        futures = [
            executor.submit(package_object, i.source, i.data, config) for i in inputs
        ]
        return [future.result() for future in futures]
