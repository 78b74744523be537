import pytest

from builders import SHF_ALLOC, SHF_WRITE, SHT_NOBITS, ElfSection, app_sections, make_elf

from elfpack.errors import MalformedObject
from elfpack.reader import SectionFlag, SectionKind, read_object


def by_name(obj):
    return {s.name: s for s in obj.sections}


def test_reads_section_table(app_elf):
    obj = read_object(app_elf)
    sections = by_name(obj)

    assert obj.machine == "EM_ARM"
    assert obj.elfclass == 32
    assert obj.entry == 0x80000004

    text = sections[".text"]
    assert text.kind == SectionKind.PROGRAM_DATA
    assert text.flags == SectionFlag.ALLOC | SectionFlag.EXEC
    assert text.executable and not text.writable
    assert text.size == 16
    assert text.address == 0x80000000
    assert obj.section_bytes(text) == bytes(range(16))

    data = sections[".data"]
    assert data.writable and data.allocated
    assert obj.section_bytes(data) == b"\xd0" * 8


def test_section_kinds(app_elf):
    sections = by_name(read_object(app_elf))

    assert sections[".rel.data"].kind == SectionKind.RELOCATION
    assert sections[".bss"].kind == SectionKind.OTHER
    assert sections[".bss"].has_data is False
    assert sections[".bss"].size == 100
    assert sections[".shstrtab"].kind == SectionKind.OTHER


def test_sorted_sections_follow_file_offset(app_elf):
    offsets = [s.offset for s in read_object(app_elf).sorted_sections()]
    assert offsets == sorted(offsets)


def test_nobits_section_may_point_past_end():
    elf = make_elf([
        ElfSection(".text", data=b"\x01" * 4, addr=0x1000),
        ElfSection(".bss", type=SHT_NOBITS, flags=SHF_WRITE | SHF_ALLOC, size=0x10000, addr=0x2000),
    ])
    assert by_name(read_object(elf))[".bss"].size == 0x10000


@pytest.mark.parametrize("data", [b"", b"not an elf file" * 8])
def test_rejects_bad_magic(data):
    with pytest.raises(MalformedObject):
        read_object(data)


def test_rejects_truncated_file(app_elf):
    with pytest.raises(MalformedObject):
        read_object(app_elf[:-12])


def test_rejects_section_past_end_of_file():
    elf = make_elf([ElfSection(".text", data=b"\x01" * 8, size=0x1000)])
    with pytest.raises(MalformedObject) as exc_info:
        read_object(elf)
    assert exc_info.value.section == ".text"


def test_object_without_persistent_section():
    sections = app_sections(wfr=False)
    obj = read_object(make_elf(sections))
    assert "storage.wfr" not in by_name(obj)
