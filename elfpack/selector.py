"""Section classification policy and the two-pass selection of image bytes."""

import logging
from dataclasses import dataclass
from enum import Enum

from .errors import AmbiguousSectionClassification, UnresolvedPersistentRegion
from .reader import ObjectFile, Section, SectionFlag, SectionKind

log = logging.getLogger(__name__)


class SectionTag(Enum):
    PROGRAM_DATA = "program_data"
    RELOCATION = "relocation"
    PERSISTENT = "persistent"


@dataclass(frozen=True)
class SectionRule:
    """Tags every section whose name matches ``pattern``."""

    pattern: str
    tag: SectionTag
    match: str = "contains"  # "contains" or "prefix"

    def __post_init__(self) -> None:
        if self.match not in ("contains", "prefix"):
            raise ValueError(f"Unknown match mode: {self.match}")

    def matches(self, name: str) -> bool:
        if self.match == "prefix":
            return name.startswith(self.pattern)
        return self.pattern in name


@dataclass(frozen=True)
class SectionPolicy:
    """Name-based classification rules, kept apart from ELF parsing.

    PROGRAM_DATA rules narrow which names the primary pass may take; with no
    such rule every name is eligible. RELOCATION rules mark sections for the
    secondary pass, PERSISTENT rules mark writeable flash regions.
    """

    rules: tuple[SectionRule, ...] = ()

    @classmethod
    def from_markers(
        cls, relocation_marker: str = ".rel", persistent_marker: str = ".wfr"
    ) -> "SectionPolicy":
        return cls(rules=(
            SectionRule(relocation_marker, SectionTag.RELOCATION),
            SectionRule(persistent_marker, SectionTag.PERSISTENT),
        ))

    def tags(self, name: str) -> frozenset[SectionTag]:
        return frozenset(rule.tag for rule in self.rules if rule.matches(name))

    def name_eligible(self, name: str) -> bool:
        program_rules = [r for r in self.rules if r.tag == SectionTag.PROGRAM_DATA]
        if not program_rules:
            return True
        return any(r.matches(name) for r in program_rules)


DEFAULT_POLICY = SectionPolicy.from_markers()

_LOADABLE = SectionFlag.WRITE | SectionFlag.EXEC | SectionFlag.ALLOC
_RAM = SectionFlag.WRITE | SectionFlag.ALLOC


@dataclass(frozen=True)
class Selection:
    """Outcome of section selection for one object file."""

    primary: tuple[Section, ...]
    secondary: tuple[Section, ...]
    persistent: tuple[Section, ...] = ()
    ram_only: tuple[Section, ...] = ()

    @property
    def sections(self) -> tuple[Section, ...]:
        """Sections in image order: primary pass, then secondary pass."""
        return self.primary + self.secondary

    @property
    def ram_only_bytes(self) -> int:
        return sum(s.size for s in self.ram_only)


def _is_primary(section: Section, policy: SectionPolicy) -> bool:
    return (
        section.kind == SectionKind.PROGRAM_DATA
        and bool(section.flags & _LOADABLE)
        and section.size > 0
        and policy.name_eligible(section.name)
    )


def select_sections(obj: ObjectFile, policy: SectionPolicy | None = None) -> Selection:
    """Choose which sections make up the loadable image, and in what order.

    The primary pass takes program data in ascending file offset; the
    secondary pass appends relocation data after it, also in ascending
    offset. A section taken by the primary pass is never taken again, even
    when its name matches the relocation rule. Persistent regions must land
    in one of the two passes.
    """
    policy = policy or DEFAULT_POLICY
    ordered = [(s, policy.tags(s.name)) for s in obj.sorted_sections()]

    primary: list[Section] = []
    for section, tags in ordered:
        if SectionTag.RELOCATION in tags and SectionTag.PERSISTENT in tags:
            raise AmbiguousSectionClassification(
                "Name matches both the relocation and persistent-storage rules",
                section=section.name,
            )
        if _is_primary(section, policy):
            primary.append(section)

    taken = set(primary)
    secondary = [
        section
        for section, tags in ordered
        if section not in taken
        and SectionTag.RELOCATION in tags
        and section.flags & _RAM
    ]
    taken.update(secondary)

    persistent: list[Section] = []
    for section, tags in ordered:
        if SectionTag.PERSISTENT not in tags:
            continue
        if section.size == 0:
            log.warning("Ignoring empty persistent-storage section %s", section.name)
            continue
        if section not in taken:
            raise UnresolvedPersistentRegion(
                "Persistent-storage section is not part of the loadable image",
                section=section.name,
            )
        persistent.append(section)

    ram_only = [
        section
        for section, _ in ordered
        if section not in taken and (section.flags & _RAM) == _RAM
    ]

    log.debug(
        "Selected %d primary, %d relocation, %d persistent, %d RAM-only sections",
        len(primary), len(secondary), len(persistent), len(ram_only),
    )
    return Selection(
        primary=tuple(primary),
        secondary=tuple(secondary),
        persistent=tuple(persistent),
        ram_only=tuple(ram_only),
    )
