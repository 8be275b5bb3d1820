"""Exception taxonomy for cladescope."""

from typing import Optional


class CladescopeError(Exception):
    """Base class for all errors raised by cladescope."""


class VisualizationConfigError(CladescopeError):
    """A single visualization entry is malformed.

    Raised while building one registry entry; the registry builder catches it,
    records it and continues with the remaining entries.
    """

    def __init__(self, label: Optional[str], reason: str):
        self.label = label
        self.reason = reason
        super().__init__(f"visualization '{label}': {reason}")


class EmptyTreeError(CladescopeError):
    """The tree handed to a session is missing or has no nodes."""


class TreeParseError(CladescopeError):
    """Newick or phyloXML input could not be parsed."""


class TreeOperationError(CladescopeError):
    """A structural operation is not applicable to the given node."""
