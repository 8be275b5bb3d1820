"""Core cladescope package: tree model, visualization registry and render engine."""

__all__ = [
    "Session",
    "NodeStore",
    "Options",
    "Settings",
    "Channel",
    "VisualizationSpec",
    "parse_tree",
    "read_tree",
]


def __getattr__(name):
    if name == "Session":
        from .session import Session

        return Session
    if name == "NodeStore":
        from .tree import NodeStore

        return NodeStore
    if name in {"Options", "Settings"}:
        from .config import Options, Settings

        return locals()[name]
    if name in {"Channel", "VisualizationSpec"}:
        from .visualization import Channel, VisualizationSpec

        return locals()[name]
    if name in {"parse_tree", "read_tree"}:
        from .parser import parse_tree, read_tree

        return locals()[name]
    raise AttributeError(name)
