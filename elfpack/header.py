"""Application header: fixed base record plus type-length-value entries.

Wire layout (all fields little-endian)::

    base   total_size u32 | header_size u16 | version u16 | flags u32
           | checksum u32 | flash_length u32
    entry  type u16 | length u16 | payload (zero-padded to 4 bytes)

The checksum is the XOR of every 32-bit word of the header, computed with
the checksum field itself set to zero.
"""

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Union

from .config import HeaderOptions, MemoryRequirements
from .errors import HeaderOverflow, MalformedHeader, ProtectedRegionTooSmall
from .image import PersistentRegion, align_up

log = logging.getLogger(__name__)

HEADER_VERSION = 2
BASE_FORMAT = "<IHHIII"
BASE_SIZE = struct.calcsize(BASE_FORMAT)
TLV_FORMAT = "<HH"
TLV_SIZE = struct.calcsize(TLV_FORMAT)
CHECKSUM_OFFSET = 8
HEADER_ALIGNMENT = 4

FLAG_ENABLED = 0x1
FLAG_STICKY = 0x2

MAX_U16 = 0xFFFF


class EntryType(IntEnum):
    MEMORY_LAYOUT = 1
    PERSISTENT_REGION = 2
    PACKAGE_NAME = 3
    FIXED_ADDRESS = 5


def _pack(fmt: str, *values: int, what: str) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as e:
        raise HeaderOverflow(f"{what} does not fit in the header: {values}") from e


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MemoryLayoutEntry:
    """Stack, heaps, minimum RAM, protected region and start offset."""

    TYPE: ClassVar[int] = EntryType.MEMORY_LAYOUT
    FORMAT: ClassVar[str] = "<IIIIII"

    stack_size: int
    app_heap_size: int
    kernel_heap_size: int
    minimum_ram_size: int
    protected_region_size: int
    init_fn_offset: int = 0

    def payload(self) -> bytes:
        return _pack(
            self.FORMAT,
            self.stack_size,
            self.app_heap_size,
            self.kernel_heap_size,
            self.minimum_ram_size,
            self.protected_region_size,
            self.init_fn_offset,
            what="Memory layout",
        )

    @classmethod
    def from_payload(cls, payload: bytes) -> "MemoryLayoutEntry":
        return cls(*struct.unpack_from(cls.FORMAT, payload))


@dataclass(frozen=True)
class PersistentRegionEntry:
    """One writeable flash region inside the application image."""

    TYPE: ClassVar[int] = EntryType.PERSISTENT_REGION
    FORMAT: ClassVar[str] = "<II"

    offset: int
    size: int

    def payload(self) -> bytes:
        return _pack(self.FORMAT, self.offset, self.size, what="Persistent region")

    @classmethod
    def from_payload(cls, payload: bytes) -> "PersistentRegionEntry":
        return cls(*struct.unpack_from(cls.FORMAT, payload))


@dataclass(frozen=True)
class PackageNameEntry:
    TYPE: ClassVar[int] = EntryType.PACKAGE_NAME

    name: str

    def payload(self) -> bytes:
        return self.name.encode("utf-8")

    @classmethod
    def from_payload(cls, payload: bytes) -> "PackageNameEntry":
        return cls(payload.decode("utf-8"))


@dataclass(frozen=True)
class FixedAddressEntry:
    TYPE: ClassVar[int] = EntryType.FIXED_ADDRESS
    FORMAT: ClassVar[str] = "<I"

    address: int

    def payload(self) -> bytes:
        return _pack(self.FORMAT, self.address, what="Fixed address")

    @classmethod
    def from_payload(cls, payload: bytes) -> "FixedAddressEntry":
        return cls(*struct.unpack_from(cls.FORMAT, payload))


@dataclass(frozen=True)
class UnknownEntry:
    """An entry type this tool does not emit, carried through untouched."""

    type: int
    data: bytes

    @property
    def TYPE(self) -> int:
        return self.type

    def payload(self) -> bytes:
        return self.data


HeaderEntry = Union[
    MemoryLayoutEntry,
    PersistentRegionEntry,
    PackageNameEntry,
    FixedAddressEntry,
    UnknownEntry,
]

ENTRY_REGISTRY: dict[int, type] = {
    EntryType.MEMORY_LAYOUT: MemoryLayoutEntry,
    EntryType.PERSISTENT_REGION: PersistentRegionEntry,
    EntryType.PACKAGE_NAME: PackageNameEntry,
    EntryType.FIXED_ADDRESS: FixedAddressEntry,
}


def encode_entry(entry: HeaderEntry) -> bytes:
    """Serialize one entry, padding its payload to the header alignment."""
    payload = entry.payload()
    if len(payload) > MAX_U16:
        raise HeaderOverflow(
            f"Entry type {entry.TYPE} payload is {len(payload)} bytes, "
            f"the limit is {MAX_U16}"
        )
    padded = payload.ljust(align_up(len(payload), HEADER_ALIGNMENT), b"\x00")
    return _pack(TLV_FORMAT, entry.TYPE, len(payload), what="Entry type") + padded


def compute_checksum(header: bytes) -> int:
    """XOR of the header's 32-bit words, with the checksum field zeroed."""
    data = bytearray(header)
    data[CHECKSUM_OFFSET:CHECKSUM_OFFSET + 4] = b"\x00\x00\x00\x00"
    data.extend(b"\x00" * (align_up(len(data), 4) - len(data)))
    checksum = 0
    for (word,) in struct.iter_unpack("<I", data):
        checksum ^= word
    return checksum


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Header:
    """A complete application header."""

    total_size: int
    header_size: int
    flash_length: int
    entries: tuple[HeaderEntry, ...] = ()
    version: int = HEADER_VERSION
    flags: int = FLAG_ENABLED

    def _encode(self) -> bytearray:
        base = _pack(
            BASE_FORMAT,
            self.total_size,
            self.header_size,
            self.version,
            self.flags,
            0,
            self.flash_length,
            what="Header base",
        )
        out = bytearray(base)
        for entry in self.entries:
            out.extend(encode_entry(entry))
        return out

    def to_bytes(self) -> bytes:
        out = self._encode()
        if len(out) != self.header_size:
            raise HeaderOverflow(
                f"Encoded header is {len(out)} bytes but header_size says {self.header_size}"
            )
        struct.pack_into("<I", out, CHECKSUM_OFFSET, compute_checksum(out))
        return bytes(out)

    @property
    def checksum(self) -> int:
        return compute_checksum(self._encode())

    @property
    def enabled(self) -> bool:
        return bool(self.flags & FLAG_ENABLED)

    @property
    def sticky(self) -> bool:
        return bool(self.flags & FLAG_STICKY)

    @property
    def memory_layout(self) -> MemoryLayoutEntry | None:
        for entry in self.entries:
            if isinstance(entry, MemoryLayoutEntry):
                return entry
        return None

    @property
    def requirements(self) -> MemoryRequirements | None:
        """The resolved memory requirements recorded in the header."""
        layout = self.memory_layout
        if layout is None:
            return None
        return MemoryRequirements(
            stack_size=layout.stack_size,
            app_heap_size=layout.app_heap_size,
            kernel_heap_size=layout.kernel_heap_size,
            minimum_ram_size=layout.minimum_ram_size,
            protected_region_size=layout.protected_region_size,
        )

    @property
    def persistent_regions(self) -> tuple[PersistentRegion, ...]:
        return tuple(
            PersistentRegion(offset=e.offset, size=e.size)
            for e in self.entries
            if isinstance(e, PersistentRegionEntry)
        )

    @property
    def package_name(self) -> str:
        for entry in self.entries:
            if isinstance(entry, PackageNameEntry):
                return entry.name
        return ""

    @property
    def fixed_address(self) -> int | None:
        for entry in self.entries:
            if isinstance(entry, FixedAddressEntry):
                return entry.address
        return None

    def describe(self) -> str:
        """Human-readable dump, logged in verbose mode."""
        lines = [
            f"header_version: {self.version:>10}",
            f"header_size:    {self.header_size:>10} {self.header_size:>#10x}",
            f"total_size:     {self.total_size:>10} {self.total_size:>#10x}",
            f"flash_length:   {self.flash_length:>10} {self.flash_length:>#10x}",
            f"flags:          {self.flags:>10} {self.flags:>#10x}",
            f"  enabled:      {'Yes' if self.enabled else 'No':>10}",
            f"  sticky:       {'Yes' if self.sticky else 'No':>10}",
        ]
        for entry in self.entries:
            if isinstance(entry, MemoryLayoutEntry):
                lines += [
                    "memory layout:",
                    f"  stack:        {entry.stack_size:>10} {entry.stack_size:>#10x}",
                    f"  app heap:     {entry.app_heap_size:>10} {entry.app_heap_size:>#10x}",
                    f"  kernel heap:  {entry.kernel_heap_size:>10} {entry.kernel_heap_size:>#10x}",
                    f"  minimum ram:  {entry.minimum_ram_size:>10} {entry.minimum_ram_size:>#10x}",
                    f"  protected:    {entry.protected_region_size:>10} {entry.protected_region_size:>#10x}",
                    f"  init_fn:      {entry.init_fn_offset:>10} {entry.init_fn_offset:>#10x}",
                ]
            elif isinstance(entry, PersistentRegionEntry):
                lines.append(
                    f"persistent region: offset {entry.offset:#x} size {entry.size:#x}"
                )
            elif isinstance(entry, PackageNameEntry):
                lines.append(f"package name:   {entry.name:>10}")
            elif isinstance(entry, FixedAddressEntry):
                lines.append(f"fixed address:  {entry.address:>#10x}")
            else:
                lines.append(f"unknown entry {entry.TYPE}: {len(entry.payload())} bytes")
        return "\n".join(lines)


def parse_header(data: bytes) -> Header:
    """Read a header back from the start of a package.

    Entry types this tool does not know are kept as UnknownEntry and skipped
    by their length.
    """
    if len(data) < BASE_SIZE:
        raise MalformedHeader(f"Need {BASE_SIZE} bytes for the header base, got {len(data)}")

    total_size, header_size, version, flags, checksum, flash_length = struct.unpack_from(
        BASE_FORMAT, data
    )
    if version != HEADER_VERSION:
        raise MalformedHeader(f"Unsupported header version {version}")
    if header_size < BASE_SIZE or header_size > len(data):
        raise MalformedHeader(f"Header size {header_size} is out of range")
    if header_size % HEADER_ALIGNMENT:
        raise MalformedHeader(f"Header size {header_size} is not {HEADER_ALIGNMENT}-byte aligned")

    raw = bytes(data[:header_size])
    expected = compute_checksum(raw)
    if checksum != expected:
        raise MalformedHeader(f"Checksum mismatch: stored {checksum:#010x}, computed {expected:#010x}")

    entries: list[HeaderEntry] = []
    pos = BASE_SIZE
    while pos < header_size:
        if pos + TLV_SIZE > header_size:
            raise MalformedHeader(f"Truncated entry at offset {pos}")
        entry_type, length = struct.unpack_from(TLV_FORMAT, raw, pos)
        start = pos + TLV_SIZE
        if start + length > header_size:
            raise MalformedHeader(f"Entry type {entry_type} at offset {pos} overruns the header")
        payload = raw[start:start + length]

        cls = ENTRY_REGISTRY.get(entry_type)
        if cls is None:
            log.debug("Skipping unknown header entry type %d (%d bytes)", entry_type, length)
            entries.append(UnknownEntry(type=entry_type, data=payload))
        else:
            try:
                entries.append(cls.from_payload(payload))
            except (struct.error, UnicodeDecodeError) as e:
                raise MalformedHeader(f"Bad payload for entry type {entry_type}: {e}") from e

        pos = start + align_up(length, HEADER_ALIGNMENT)

    return Header(
        total_size=total_size,
        header_size=header_size,
        flash_length=flash_length,
        entries=tuple(entries),
        version=version,
        flags=flags,
    )


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def _slot_size(used: int, options: HeaderOptions) -> int:
    """Size of the flash slot the loader will reserve for ``used`` bytes."""
    if not options.pad_to_power_of_two:
        return used
    if used & (used - 1):
        used = 1 << used.bit_length()
    return max(used, options.minimum_slot_size)


def synthesize_header(
    requirements: MemoryRequirements,
    flash_length: int,
    regions: tuple[PersistentRegion, ...] | list[PersistentRegion] = (),
    ram_only_bytes: int = 0,
    entry_offset: int = 0,
    package_name: str = "",
    fixed_address: int | None = None,
    options: HeaderOptions | None = None,
    ram_alignment: int = 8,
) -> Header:
    """Compute the header for an image of ``flash_length`` bytes.

    Entries are emitted in a fixed order: memory layout, persistent regions
    by ascending offset, package name, fixed address. Missing
    ``minimum_ram_size`` is derived from the RAM-only sections; missing
    ``protected_region_size`` defaults to the header size itself.
    """
    options = options or HeaderOptions()
    alignment = options.ram_alignment or ram_alignment

    minimum_ram = requirements.minimum_ram_size
    if minimum_ram is None:
        minimum_ram = align_up(ram_only_bytes, alignment)

    def build_entries(protected: int, init_fn_offset: int) -> list[HeaderEntry]:
        entries: list[HeaderEntry] = [
            MemoryLayoutEntry(
                stack_size=requirements.stack_size,
                app_heap_size=requirements.app_heap_size,
                kernel_heap_size=requirements.kernel_heap_size,
                minimum_ram_size=minimum_ram,
                protected_region_size=protected,
                init_fn_offset=init_fn_offset,
            )
        ]
        for region in sorted(regions, key=lambda r: r.offset):
            entries.append(PersistentRegionEntry(offset=region.offset, size=region.size))
        if package_name:
            entries.append(PackageNameEntry(package_name))
        if fixed_address is not None:
            entries.append(FixedAddressEntry(fixed_address))
        return entries

    # Entry sizes do not depend on the values, so a first pass gives the size.
    header_size = BASE_SIZE + sum(len(encode_entry(e)) for e in build_entries(0, 0))
    if header_size > MAX_U16:
        raise HeaderOverflow(f"Header is {header_size} bytes, the limit is {MAX_U16}")

    protected = requirements.protected_region_size
    if protected is None:
        protected = header_size
    elif protected < header_size:
        raise ProtectedRegionTooSmall(
            f"protected_region_size = {protected} is too small for the header. "
            f"Header size: {header_size}"
        )

    padding = protected - header_size
    header = Header(
        total_size=_slot_size(protected + flash_length, options),
        header_size=header_size,
        flash_length=flash_length,
        entries=tuple(build_entries(protected, entry_offset + padding)),
        flags=FLAG_ENABLED | (FLAG_STICKY if options.sticky else 0),
    )
    # Range-check every field before anyone relies on the header.
    header.to_bytes()

    log.debug("Header:\n%s", header.describe())
    return header
