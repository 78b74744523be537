"""Packaging configuration, architecture table and YAML loading."""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class MemoryRequirements:
    """RAM and flash sizes requested for an application."""

    stack_size: int = 2048
    app_heap_size: int = 1024
    kernel_heap_size: int = 1024
    minimum_ram_size: int | None = None  # None = derive from RAM-only sections
    protected_region_size: int | None = None  # None = natural header size


@dataclass(frozen=True)
class HeaderOptions:
    """Target-loader knobs that shape the header and slot size."""

    pad_to_power_of_two: bool = True
    minimum_slot_size: int = 512
    sticky: bool = False
    ram_alignment: int | None = None  # None = use the architecture default

    def __post_init__(self) -> None:
        for key in ("minimum_slot_size", "ram_alignment"):
            value = getattr(self, key)
            if value is not None and (value <= 0 or value & (value - 1)):
                raise ConfigError(f"{key} must be a power of two, got {value}")


@dataclass(frozen=True)
class PackagerConfig:
    """Configuration shared by every input of one invocation."""

    memory: MemoryRequirements = field(default_factory=MemoryRequirements)
    header: HeaderOptions = field(default_factory=HeaderOptions)
    package_name: str = ""
    fixed_address: int | None = None
    deterministic: bool = False
    include_metadata: bool = False
    extension: str = "tbf"
    relocation_marker: str = ".rel"
    persistent_marker: str = ".wfr"


@dataclass(frozen=True)
class ArchInfo:
    """Naming and RAM alignment for one ELF machine type."""

    name: str
    ram_alignment: int = 8
    name64: str | None = None  # name used for ELFCLASS64 objects, if different


# ELF machine (pyelftools e_machine string) -> architecture info
ARCHITECTURES: dict[str, ArchInfo] = {
    "EM_ARM": ArchInfo(name="arm", ram_alignment=8),
    "EM_AARCH64": ArchInfo(name="aarch64", ram_alignment=16),
    "EM_RISCV": ArchInfo(name="riscv32", ram_alignment=8, name64="riscv64"),
    "EM_386": ArchInfo(name="x86", ram_alignment=4),
    "EM_X86_64": ArchInfo(name="x86_64", ram_alignment=16),
    "EM_MIPS": ArchInfo(name="mips", ram_alignment=8, name64="mips64"),
    "EM_MSP430": ArchInfo(name="msp430", ram_alignment=2),
    "EM_AVR": ArchInfo(name="avr", ram_alignment=2),
    "EM_XTENSA": ArchInfo(name="xtensa", ram_alignment=8),
}


def get_arch(machine: str, elfclass: int = 32) -> ArchInfo:
    """Look up an ELF machine, falling back to a name derived from it."""
    info = ARCHITECTURES.get(machine)
    if info is None:
        name = machine.removeprefix("EM_").lower() or "unknown"
        return ArchInfo(name=name)
    if elfclass == 64 and info.name64:
        return replace(info, name=info.name64)
    return info


def parse_int(value: Any, key: str = "value") -> int:
    """Accept ints and decimal or 0x-prefixed strings."""
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        try:
            result = int(value, 0)
        except ValueError:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from None
    else:
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if result < 0:
        raise ConfigError(f"{key} must not be negative, got {result}")
    return result


def _coerce(section: str, raw: dict[str, Any], cls: type) -> dict[str, Any]:
    """Validate a YAML mapping against a config dataclass."""
    if not isinstance(raw, dict):
        raise ConfigError(f"{section} must be a mapping")

    known = {f.name: f for f in fields(cls)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            raise ConfigError(f"Unknown {section} option: {key}")
        default = known[key].default
        if value is None:
            if default is None:
                values[key] = None
            continue
        elif isinstance(default, bool):
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be true or false, got {value!r}")
            values[key] = value
        elif isinstance(default, str):
            values[key] = str(value)
        else:
            values[key] = parse_int(value, key)
    return values


_MEMORY_KEYS = {f.name for f in fields(MemoryRequirements)}
_TOP_LEVEL_KEYS = {
    "package_name",
    "fixed_address",
    "deterministic",
    "metadata",
    "extension",
    "header",
    "sections",
}


def config_from_dict(raw: dict[str, Any] | None) -> PackagerConfig:
    """Build a PackagerConfig from a parsed YAML document."""
    if raw is None:
        return PackagerConfig()
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping")

    unknown = set(raw) - _MEMORY_KEYS - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown configuration option(s): {', '.join(sorted(unknown))}")

    memory = MemoryRequirements(**_coerce(
        "memory", {k: v for k, v in raw.items() if k in _MEMORY_KEYS}, MemoryRequirements
    ))
    header = HeaderOptions(**_coerce("header", raw.get("header") or {}, HeaderOptions))

    sections = raw.get("sections") or {}
    if not isinstance(sections, dict):
        raise ConfigError("sections must be a mapping")
    unknown = set(sections) - {"relocation_marker", "persistent_marker"}
    if unknown:
        raise ConfigError(f"Unknown sections option(s): {', '.join(sorted(unknown))}")

    top = _coerce(
        "top-level",
        {
            k: v
            for k, v in raw.items()
            if k in ("package_name", "fixed_address", "deterministic", "extension")
        },
        PackagerConfig,
    )
    if "metadata" in raw:
        top.update(
            _coerce("top-level", {"include_metadata": raw["metadata"]}, PackagerConfig)
        )
    for key in ("relocation_marker", "persistent_marker"):
        if key in sections:
            if not sections[key]:
                raise ConfigError(f"{key} must not be empty")
            top[key] = str(sections[key])
    return PackagerConfig(memory=memory, header=header, **top)


def load_config(config_path: Path) -> PackagerConfig:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    return config_from_dict(raw)
