"""Minimal ELF32 writer for tests: just enough for the section table reader."""

import struct
from dataclasses import dataclass

from elfpack.reader import ObjectFile, Section, SectionFlag, SectionKind

SHT_PROGBITS = 1
SHT_STRTAB = 3
SHT_NOBITS = 8
SHT_REL = 9

SHF_WRITE = 0x1
SHF_ALLOC = 0x2
SHF_EXECINSTR = 0x4

EM_ARM = 40
EM_RISCV = 243

ELF32_EHDR_SIZE = 52
ELF32_SHDR_SIZE = 40


@dataclass
class ElfSection:
    name: str
    type: int = SHT_PROGBITS
    flags: int = SHF_ALLOC
    data: bytes = b""
    addr: int = 0
    size: int | None = None  # overrides the declared sh_size
    entsize: int = 0


def _pad4(buf: bytearray) -> None:
    buf.extend(b"\x00" * (-len(buf) % 4))


def make_elf(sections: list[ElfSection], machine: int = EM_ARM, entry: int = 0) -> bytes:
    """Lay out section data in list order after the ELF header."""
    shstrtab = bytearray(b"\x00")
    name_offsets = []
    for name in [s.name for s in sections] + [".shstrtab"]:
        name_offsets.append(len(shstrtab))
        shstrtab.extend(name.encode() + b"\x00")

    body = bytearray(ELF32_EHDR_SIZE)
    headers = [bytes(ELF32_SHDR_SIZE)]
    for section, name_offset in zip(sections, name_offsets):
        _pad4(body)
        offset = len(body)
        if section.type != SHT_NOBITS:
            body.extend(section.data)
        size = section.size if section.size is not None else len(section.data)
        headers.append(struct.pack(
            "<10I", name_offset, section.type, section.flags, section.addr,
            offset, size, 0, 0, 4, section.entsize,
        ))

    _pad4(body)
    headers.append(struct.pack(
        "<10I", name_offsets[-1], SHT_STRTAB, 0, 0, len(body), len(shstrtab), 0, 0, 1, 0,
    ))
    body.extend(shstrtab)

    _pad4(body)
    shoff = len(body)
    for header in headers:
        body.extend(header)

    e_ident = b"\x7fELF" + bytes([1, 1, 1, 0]) + bytes(8)
    body[:ELF32_EHDR_SIZE] = e_ident + struct.pack(
        "<HHIIIIIHHHHHH",
        2,  # ET_EXEC
        machine,
        1,
        entry,
        0,
        shoff,
        0,
        ELF32_EHDR_SIZE,
        32,
        0,
        ELF32_SHDR_SIZE,
        len(headers),
        len(headers) - 1,
    )
    return bytes(body)


def app_sections(wfr: bool = True) -> list[ElfSection]:
    """A small application: code, data, a writeable flash region, bss, relocations."""
    sections = [
        ElfSection(".text", flags=SHF_ALLOC | SHF_EXECINSTR, data=bytes(range(16)), addr=0x80000000),
        ElfSection(".data", flags=SHF_WRITE | SHF_ALLOC, data=b"\xd0" * 8, addr=0x20000000),
    ]
    if wfr:
        sections.append(
            ElfSection("storage.wfr", flags=SHF_WRITE | SHF_ALLOC, data=b"\xee" * 64, addr=0x80000010)
        )
    sections += [
        ElfSection(".bss", type=SHT_NOBITS, flags=SHF_WRITE | SHF_ALLOC, size=100, addr=0x20000008),
        ElfSection(".rel.data", type=SHT_REL, flags=SHF_ALLOC, data=b"\x4e" * 8, entsize=8),
    ]
    return sections


def section(
    name: str,
    offset: int,
    size: int,
    kind: SectionKind = SectionKind.PROGRAM_DATA,
    flags: SectionFlag = SectionFlag.ALLOC,
    address: int | None = None,
) -> Section:
    """A Section with an address that never overlaps another test section."""
    return Section(
        name=name,
        kind=kind,
        flags=flags,
        offset=offset,
        size=size,
        address=0x10000 + offset if address is None else address,
    )


def object_file(data: bytes, *sections: Section, entry: int = 0) -> ObjectFile:
    return ObjectFile(data=data, sections=tuple(sections), machine="EM_ARM", entry=entry)
