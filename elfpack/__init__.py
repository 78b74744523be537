"""elfpack - package linked ELF executables into a multi-architecture application bundle."""

from .archive import (
    ArchiveAssembler,
    ArchiveEntry,
    BuildResult,
    build_archive,
    entry_name,
    name_entries,
)
from .config import (
    ARCHITECTURES,
    ArchInfo,
    HeaderOptions,
    MemoryRequirements,
    PackagerConfig,
    get_arch,
    load_config,
)
from .errors import (
    AmbiguousSectionClassification,
    ConfigError,
    DuplicateArchitectureName,
    HeaderOverflow,
    IOFailure,
    MalformedHeader,
    MalformedObject,
    PackagingError,
    ProtectedRegionTooSmall,
    TruncatedSectionData,
    UnresolvedPersistentRegion,
)
from .header import (
    ENTRY_REGISTRY,
    FixedAddressEntry,
    Header,
    MemoryLayoutEntry,
    PackageNameEntry,
    PersistentRegionEntry,
    UnknownEntry,
    parse_header,
    synthesize_header,
)
from .image import LoadableImage, PersistentRegion, build_image
from .packager import ArchitecturePackage, PackageInput, package_all, package_object
from .reader import ObjectFile, Section, SectionFlag, SectionKind, read_object
from .selector import (
    DEFAULT_POLICY,
    SectionPolicy,
    SectionRule,
    SectionTag,
    Selection,
    select_sections,
)

__all__ = [
    # Archive
    "ArchiveAssembler",
    "ArchiveEntry",
    "BuildResult",
    "build_archive",
    "entry_name",
    "name_entries",
    # Config
    "ARCHITECTURES",
    "ArchInfo",
    "HeaderOptions",
    "MemoryRequirements",
    "PackagerConfig",
    "get_arch",
    "load_config",
    # Errors
    "AmbiguousSectionClassification",
    "ConfigError",
    "DuplicateArchitectureName",
    "HeaderOverflow",
    "IOFailure",
    "MalformedHeader",
    "MalformedObject",
    "PackagingError",
    "ProtectedRegionTooSmall",
    "TruncatedSectionData",
    "UnresolvedPersistentRegion",
    # Header
    "ENTRY_REGISTRY",
    "FixedAddressEntry",
    "Header",
    "MemoryLayoutEntry",
    "PackageNameEntry",
    "PersistentRegionEntry",
    "UnknownEntry",
    "parse_header",
    "synthesize_header",
    # Image
    "LoadableImage",
    "PersistentRegion",
    "build_image",
    # Packager
    "ArchitecturePackage",
    "PackageInput",
    "package_all",
    "package_object",
    # Reader
    "ObjectFile",
    "Section",
    "SectionFlag",
    "SectionKind",
    "read_object",
    # Selector
    "DEFAULT_POLICY",
    "SectionPolicy",
    "SectionRule",
    "SectionTag",
    "Selection",
    "select_sections",
]
