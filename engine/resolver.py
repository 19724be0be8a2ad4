"""Resolution orchestrator: extract metadata, fan out to adapters, reconcile."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Sequence

from config.settings import CONFIDENCE_THRESHOLD
from engine.errors import MetadataExtractionFailed, NoConfidentLinksFound
from engine.json_utils import log_event
from engine.platform_adapters import PlatformAdapter, default_adapters
from metadata.extractor import MetadataExtractor
from metadata.types import AdapterResult, CoreMeta, Resolution, ResolveHit

logger = logging.getLogger(__name__)


def reconcile(hits: Iterable[ResolveHit]) -> list[ResolveHit]:
    """Keep one hit per platform, the one with the highest confidence.

    Ties keep the first hit seen. Output order follows the first appearance
    of each platform.
    """
    best: dict = {}
    for hit in hits:
        current = best.get(hit.platform)
        if current is None or hit.confidence > current.confidence:
            best[hit.platform] = hit
    return list(best.values())


def filter_confident(hits: Iterable[ResolveHit], threshold: float = CONFIDENCE_THRESHOLD) -> list[ResolveHit]:
    return [hit for hit in hits if hit.confidence >= threshold]


class TrackResolver:
    def __init__(
        self,
        *,
        extractor: MetadataExtractor | None = None,
        adapters: Sequence[PlatformAdapter] | None = None,
    ) -> None:
        self.extractor = extractor or MetadataExtractor()
        if adapters is None:
            adapters = default_adapters(self.extractor.spotify_client)
        self.adapters = list(adapters)

    def _transition(self, state: str, **fields) -> None:
        log_event(logging.INFO, "resolve_state", state=state, **fields)

    async def resolve(
        self,
        *,
        seed_url: str | None = None,
        query: str | None = None,
        meta: CoreMeta | None = None,
        storefront: str | None = None,
        skip_fanout: bool = False,
    ) -> Resolution:
        self._transition("start", seed_url=seed_url, query=query, structured=meta is not None)
        self._transition("extracting_metadata")
        try:
            extraction = await asyncio.to_thread(
                self.extractor.extract,
                seed_url=seed_url,
                query=query,
                meta=meta,
                storefront=storefront,
            )
        except MetadataExtractionFailed as exc:
            self._transition("metadata_failed", reason=exc.message)
            raise

        core = extraction.core
        if extraction.source == "structured" and not core.isrc and not skip_fanout:
            core = await asyncio.to_thread(self.extractor.enrich_isrc, core, storefront=storefront)

        source_hit = extraction.source_hit
        hits: list[ResolveHit] = []
        failures: dict[str, str] = {}
        if skip_fanout:
            self._transition("fanout_skipped")
        else:
            adapters = [
                adapter
                for adapter in self.adapters
                if not (source_hit is not None and adapter.authoritative and adapter.platform == source_hit.platform)
            ]
            self._transition("fanning_out", adapters=[adapter.platform.value for adapter in adapters])
            results = await self._fan_out(adapters, core, storefront)
            for adapter, result in zip(adapters, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "Adapter raised for platform=%s",
                        adapter.platform.value,
                        exc_info=(type(result), result, result.__traceback__),
                    )
                    failures[adapter.platform.value] = f"unexpected error: {result}"
                    continue
                if not result.ok:
                    failures[adapter.platform.value] = result.reason or "failed"
                hits.extend(result.hits)

        if source_hit is not None and all(hit.platform != source_hit.platform for hit in hits):
            hits.append(source_hit)
        hits.extend(extraction.extra_hits)

        self._transition("reconciling", hits=len(hits), failures=failures)
        links = filter_confident(reconcile(hits))
        if not links:
            self._transition("no_confident_links", failures=failures)
            raise NoConfidentLinksFound(
                "no platform produced a confident match",
                core=core.to_dict(),
                adapter_failures=failures,
            )
        self._transition("done", links=[hit.platform.value for hit in links])
        return Resolution(core=core, links=links, source=extraction.source, adapter_failures=failures)

    async def _fan_out(
        self,
        adapters: Sequence[PlatformAdapter],
        core: CoreMeta,
        storefront: str | None,
    ) -> list[AdapterResult | BaseException]:
        # Each adapter gets its own copy so none can observe another's changes.
        return await asyncio.gather(
            *(asyncio.to_thread(adapter.lookup, replace(core), storefront) for adapter in adapters),
            return_exceptions=True,
        )
