"""Error taxonomy for the ELF to application-bundle pipeline."""


class PackagingError(Exception):
    """Base class for every failure raised while packaging an input.

    ``source`` is filled in by the architecture packager with the identifier
    of the input being processed; ``section`` names the offending section
    where one is known.
    """

    def __init__(self, message: str, source: str | None = None, section: str | None = None):
        super().__init__(message)
        self.message = message
        self.source = source
        self.section = section

    def __reduce__(self):
        # Keep source and section when errors cross a process boundary.
        return (self.__class__, (self.message, self.source, self.section))

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(self.source)
        if self.section:
            parts.append(f"section {self.section}")
        if parts:
            return f"{': '.join(parts)}: {self.message}"
        return self.message


class MalformedObject(PackagingError):
    """The input is not a well-formed ELF container."""


class TruncatedSectionData(MalformedObject):
    """A selected section's bytes are not fully present in the input."""


class UnresolvedPersistentRegion(PackagingError):
    """A persistent-storage section was not placed in the image."""


class AmbiguousSectionClassification(PackagingError):
    """A section matches classification rules that exclude each other."""


class ProtectedRegionTooSmall(PackagingError):
    """The requested protected region cannot hold the header."""


class HeaderOverflow(PackagingError):
    """A header field does not fit in its wire-format width."""


class MalformedHeader(PackagingError):
    """Bytes handed to the header parser are not a valid header."""


class DuplicateArchitectureName(PackagingError):
    """Two inputs map to the same archive entry name."""


class IOFailure(PackagingError):
    """Reading an input or writing an output failed."""


class ConfigError(PackagingError):
    """The packaging configuration is invalid."""
