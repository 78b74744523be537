"""Concatenation of selected sections into the loadable application image."""

import logging
from dataclasses import dataclass, field

from .errors import MalformedObject, TruncatedSectionData
from .reader import ObjectFile, Section
from .selector import Selection

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistentRegion:
    """A writeable flash region, as an offset into the loadable image."""

    offset: int
    size: int


@dataclass(frozen=True)
class LoadableImage:
    """Application bytes plus where each selected section landed."""

    data: bytes
    offsets: dict[Section, int] = field(default_factory=dict)
    persistent_regions: tuple[PersistentRegion, ...] = ()
    entry_offset: int = 0

    def __len__(self) -> int:
        return len(self.data)


def align_up(value: int, alignment: int) -> int:
    """Round up to next alignment boundary."""
    if alignment <= 1:
        return value
    return (value + alignment - 1) & ~(alignment - 1)


def _find_entry_offset(obj: ObjectFile, selection: Selection, offsets: dict[Section, int]) -> int:
    """Position in the image of the ELF entry point, or 0 if it is not there."""
    found: Section | None = None
    for section in selection.primary:
        if "debug" in section.name:
            continue
        if section.address <= obj.entry < section.address + section.size:
            if found is not None:
                raise MalformedObject(
                    f"Entry point {obj.entry:#x} is also inside {found.name}",
                    section=section.name,
                )
            found = section

    if found is None:
        log.debug("Entry point %#x is not inside any loaded section", obj.entry)
        return 0

    log.debug("Entry point is in %s section", found.name)
    return offsets[found] + (obj.entry - found.address)


def build_image(obj: ObjectFile, selection: Selection) -> LoadableImage:
    """Concatenate the selected sections, with no padding between them."""
    image = bytearray()
    offsets: dict[Section, int] = {}

    for section in selection.sections:
        end = section.offset + section.size
        if not section.has_data or end > len(obj.data):
            raise TruncatedSectionData(
                f"Needs bytes {section.offset:#x}..{end:#x} but the input "
                f"is {len(obj.data):#x} bytes long",
                section=section.name,
            )

        position = len(image)
        if align_up(position, 4) != position:
            log.warning(
                "Placing section %s at %#x, which is not 4-byte aligned",
                section.name, position,
            )
        log.debug(
            "  Adding %s section. Offset: %d (%#x). Length: %d (%#x) bytes.",
            section.name, position, position, section.size, section.size,
        )

        offsets[section] = position
        image.extend(obj.section_bytes(section))

    regions = tuple(
        PersistentRegion(offset=offsets[s], size=s.size) for s in selection.persistent
    )

    return LoadableImage(
        data=bytes(image),
        offsets=offsets,
        persistent_regions=tuple(sorted(regions, key=lambda r: r.offset)),
        entry_offset=_find_entry_offset(obj, selection, offsets),
    )
