from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from loguru import logger

from ..models import GroundingSource

SourcesCallback = Callable[[List[GroundingSource]], None]


class GroundingCollector:
    """
    Collects citation sources for one streamed turn.

    Sources are keyed by uri: the first occurrence wins and keeps its position,
    later duplicates are dropped. Every update republishes the full list.
    """

    def __init__(self, on_sources: Optional[SourcesCallback] = None):
        self._on_sources = on_sources
        self._sources: Dict[str, GroundingSource] = {}

    @property
    def sources(self) -> List[GroundingSource]:
        return list(self._sources.values())

    def add(self, records: Iterable[Union[GroundingSource, Dict[str, Any]]]) -> List[GroundingSource]:
        records = list(records or [])
        if not records:
            return self.sources

        added = 0
        for record in records:
            source = _coerce_source(record)
            if source is None:
                logger.debug(f"Dropping malformed grounding record: {record!r}")
                continue
            if source.uri in self._sources:
                continue
            self._sources[source.uri] = source
            added += 1

        current = self.sources
        if added:
            logger.debug(f"Grounding: {added} new source(s), {len(current)} total")
        self._publish(current)
        return current

    def _publish(self, sources: List[GroundingSource]) -> None:
        if self._on_sources is None:
            return
        try:
            self._on_sources(sources)
        except Exception as e:
            # A broken subscriber must not stop the text stream
            logger.error(f"Sources subscriber raised: {e}")


def _coerce_source(record: Any) -> Optional[GroundingSource]:
    if isinstance(record, GroundingSource):
        return record if record.uri else None
    if isinstance(record, dict):
        uri = record.get("uri")
        if not uri or not isinstance(uri, str):
            return None
        title = record.get("title") or uri
        return GroundingSource(title=str(title), uri=uri)
    return None


def extract_grounding_records(response: Any) -> List[GroundingSource]:
    """
    Pulls web citations out of a Gemini response chunk.

    Reads candidates[0].grounding_metadata.grounding_chunks[].web. Malformed
    metadata yields an empty list.
    """
    try:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return []
        metadata = getattr(candidates[0], "grounding_metadata", None)
        if metadata is None:
            return []
        records = []
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            uri = getattr(web, "uri", None) if web is not None else None
            if not uri:
                continue
            title = getattr(web, "title", None) or uri
            records.append(GroundingSource(title=title, uri=uri))
        return records
    except Exception as e:
        logger.warning(f"Failed to parse grounding metadata, ignoring it: {e}")
        return []
