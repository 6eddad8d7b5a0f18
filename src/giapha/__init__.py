"""Gia Pha registry - a moderated family-tree store.

Persons and families are kept in a bidirectionally linked graph; members
propose changes as contributions which privileged reviewers approve and
apply, with every effected action recorded in an append-only audit log.
"""

__version__ = "0.1.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "FamilyRegistry":
        from giapha.registry import FamilyRegistry
        return FamilyRegistry
    if name == "Caller":
        from giapha.caller import Caller
        return Caller
    if name == "Role":
        from giapha.caller import Role
        return Role
    if name == "graph":
        from giapha import graph
        return graph
    if name == "contributions":
        from giapha import contributions
        return contributions
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
