"""ELF section table reader."""

import io
import logging
from dataclasses import dataclass
from enum import Enum, Flag

from elftools.common.exceptions import ELFError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.elffile import ELFFile

from .errors import MalformedObject

log = logging.getLogger(__name__)


class SectionKind(Enum):
    PROGRAM_DATA = "program_data"
    RELOCATION = "relocation"
    OTHER = "other"


class SectionFlag(Flag):
    NONE = 0
    WRITE = 1
    ALLOC = 2
    EXEC = 4


_KIND_BY_TYPE: dict[str, SectionKind] = {
    "SHT_PROGBITS": SectionKind.PROGRAM_DATA,
    "SHT_REL": SectionKind.RELOCATION,
    "SHT_RELA": SectionKind.RELOCATION,
}


@dataclass(frozen=True)
class Section:
    """A named byte range of the object file."""

    name: str
    kind: SectionKind
    flags: SectionFlag
    offset: int
    size: int
    address: int = 0
    has_data: bool = True  # False for SHT_NOBITS, which occupies no file bytes

    @property
    def writable(self) -> bool:
        return bool(self.flags & SectionFlag.WRITE)

    @property
    def allocated(self) -> bool:
        return bool(self.flags & SectionFlag.ALLOC)

    @property
    def executable(self) -> bool:
        return bool(self.flags & SectionFlag.EXEC)


@dataclass(frozen=True)
class ObjectFile:
    """Section table and raw bytes of one linked executable."""

    data: bytes
    sections: tuple[Section, ...]
    machine: str = "EM_NONE"
    elfclass: int = 32
    entry: int = 0

    def sorted_sections(self) -> list[Section]:
        """Sections in ascending file-offset order (stable for equal offsets)."""
        return sorted(self.sections, key=lambda s: s.offset)

    def section_bytes(self, section: Section) -> bytes:
        return self.data[section.offset:section.offset + section.size]


def _section_flags(sh_flags: int) -> SectionFlag:
    flags = SectionFlag.NONE
    if sh_flags & SH_FLAGS.SHF_WRITE:
        flags |= SectionFlag.WRITE
    if sh_flags & SH_FLAGS.SHF_ALLOC:
        flags |= SectionFlag.ALLOC
    if sh_flags & SH_FLAGS.SHF_EXECINSTR:
        flags |= SectionFlag.EXEC
    return flags


def read_object(data: bytes) -> ObjectFile:
    """Parse the section table of an ELF image held in memory.

    Raises MalformedObject when the magic is missing, the section header
    table does not fit in ``data``, or a section claims file bytes beyond
    the end of the input.
    """
    data = bytes(data)
    try:
        elf = ELFFile(io.BytesIO(data))
        header = elf.header

        table_end = header["e_shoff"] + header["e_shnum"] * header["e_shentsize"]
        if header["e_shnum"] and table_end > len(data):
            raise MalformedObject(
                f"Section header table ends at {table_end:#x}, "
                f"past end of file ({len(data):#x})"
            )

        sections = []
        for raw in elf.iter_sections():
            sh_type = raw["sh_type"]
            section = Section(
                name=raw.name,
                kind=_KIND_BY_TYPE.get(sh_type, SectionKind.OTHER),
                flags=_section_flags(raw["sh_flags"]),
                offset=raw["sh_offset"],
                size=raw["sh_size"],
                address=raw["sh_addr"],
                has_data=sh_type != "SHT_NOBITS",
            )
            if section.has_data and section.offset + section.size > len(data):
                raise MalformedObject(
                    f"Declared range {section.offset:#x}+{section.size:#x} "
                    f"exceeds file length {len(data):#x}",
                    section=section.name,
                )
            sections.append(section)

        machine = header["e_machine"]
        if not isinstance(machine, str):
            machine = f"EM_{machine}"

        obj = ObjectFile(
            data=data,
            sections=tuple(sections),
            machine=machine,
            elfclass=elf.elfclass,
            entry=header["e_entry"],
        )
    except ELFError as e:
        raise MalformedObject(f"Not a valid ELF file: {e}") from e

    log.debug(
        "Read %d sections (%s, ELF%d, entry %#x)",
        len(obj.sections), obj.machine, obj.elfclass, obj.entry,
    )
    return obj
