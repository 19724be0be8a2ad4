from .types import CoreMeta, Platform, ResolveHit

__all__ = ["CoreMeta", "Platform", "ResolveHit"]
