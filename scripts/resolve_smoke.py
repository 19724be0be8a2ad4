#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import sys

from engine.errors import ResolutionError
from engine.resolver import TrackResolver


def main() -> int:
    value = " ".join(sys.argv[1:]).strip()
    if not value:
        print("Usage: scripts/resolve_smoke.py <track url | query>")
        return 1
    resolver = TrackResolver()
    if value.startswith(("http://", "https://", "spotify:")):
        kwargs = {"seed_url": value}
    else:
        kwargs = {"query": value}
    try:
        resolution = asyncio.run(resolver.resolve(**kwargs))
    except ResolutionError as exc:
        print(f"error={exc.code} message={exc.message}")
        return 2
    core = resolution.core
    print(f"{core.artist} - {core.title} isrc={core.isrc} source={resolution.source}")
    for idx, hit in enumerate(resolution.links, start=1):
        print(f"{idx}. {hit.platform.value} | {hit.url_web} | confidence={hit.confidence}")
    for platform, reason in sorted(resolution.adapter_failures.items()):
        print(f"failed: {platform} ({reason})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
