"""Two-source translation resolution with batching and per-batch fallback."""

from __future__ import annotations

import asyncio
from typing import Sequence

import structlog

from capx.gateway.sparql import TranslationSource
from capx.infra.result import Error, TransportError
from capx.infra.retry import batch_retry
from capx.models.capacity_models import (
    ResolvedTranslation,
    SourceRecord,
    TranslationRequest,
    is_entity_id,
)

LOGGER = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 20


def merge_records(
    item: TranslationRequest,
    primary: SourceRecord | None,
    secondary: SourceRecord | None,
    *,
    language: str,
) -> ResolvedTranslation:
    """Merge the two source records of one item.

    A non-empty primary field always wins; the secondary record only fills
    fields the primary left empty. The item is a fallback translation when
    the declared language tag of a field's supplier differs from ``language``.
    """
    name, name_tag = "", None
    if primary is not None and primary.name:
        name, name_tag = primary.name, primary.label_language
    elif secondary is not None and secondary.name:
        name, name_tag = secondary.name, secondary.label_language

    description, description_tag = "", None
    if primary is not None and primary.description:
        description, description_tag = primary.description, primary.description_language
    elif secondary is not None and secondary.description:
        description, description_tag = secondary.description, secondary.description_language

    requested = language.lower()
    is_fallback = any(
        tag is not None and tag.lower() != requested
        for tag in (name_tag if name else None, description_tag if description else None)
    )
    return ResolvedTranslation(
        code=item.code,
        external_id=item.external_id,
        name=name,
        description=description,
        external_alt_id=primary.external_alt_id if primary is not None else "",
        is_fallback_translation=is_fallback,
        resolved=bool(name or description),
    )


class TranslationPipeline:
    """Resolve localized names/descriptions for ``(code, external_id)`` pairs.

    Items are split into batches of ``batch_size``. Each batch asks the
    primary source first and the secondary source only for items still
    lacking a description. A failing source degrades its own batch and
    never aborts the others.
    """

    def __init__(
        self,
        primary: TranslationSource,
        secondary: TranslationSource,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_attempts: int = 2,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._primary = primary
        self._secondary = secondary
        self._batch_size = batch_size
        self._batch_attempts = max(1, batch_attempts)
        self._retry_wait_seconds = retry_wait_seconds

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def batches(self, items: Sequence[TranslationRequest]) -> list[list[TranslationRequest]]:
        return [
            list(items[start : start + self._batch_size])
            for start in range(0, len(items), self._batch_size)
        ]

    async def resolve(
        self, items: Sequence[TranslationRequest], language: str
    ) -> list[ResolvedTranslation]:
        """Return one ``ResolvedTranslation`` per input item, in input order."""
        resolvable = [item for item in items if item.external_id and is_entity_id(item.external_id)]
        skipped = len(items) - len(resolvable)
        if skipped:
            LOGGER.debug("translation_pipeline.items.skipped", count=skipped, reason="no_external_id")

        batches = self.batches(resolvable)
        batch_results = await asyncio.gather(
            *(
                self._resolve_batch(index, batch, language)
                for index, batch in enumerate(batches, start=1)
            )
        )

        by_item: dict[tuple[int, str], ResolvedTranslation] = {}
        for results in batch_results:
            for resolved in results:
                by_item[(resolved.code, resolved.external_id)] = resolved

        output = [
            by_item.get((item.code, item.external_id))
            or ResolvedTranslation(code=item.code, external_id=item.external_id)
            for item in items
        ]
        LOGGER.info(
            "translation_pipeline.resolve.done",
            language=language,
            items=len(items),
            batches=len(batches),
            resolved=sum(1 for r in output if r.resolved),
            fallbacks=sum(1 for r in output if r.is_fallback_translation),
        )
        return output

    async def _resolve_batch(
        self, index: int, batch: Sequence[TranslationRequest], language: str
    ) -> list[ResolvedTranslation]:
        external_ids = list(dict.fromkeys(item.external_id for item in batch))
        primary = await self._query(self._primary, external_ids, language, batch_index=index)
        if primary is None:
            LOGGER.warning(
                "translation_pipeline.batch.degraded",
                batch=index,
                size=len(batch),
                source=self._primary.name,
            )
            primary = {}

        missing = list(
            dict.fromkeys(
                item.external_id
                for item in batch
                if not (item.external_id in primary and primary[item.external_id].description)
            )
        )
        secondary: dict[str, SourceRecord] = {}
        if missing:
            secondary = await self._query(self._secondary, missing, language, batch_index=index) or {}

        return [
            merge_records(
                item,
                primary.get(item.external_id),
                secondary.get(item.external_id),
                language=language,
            )
            for item in batch
        ]

    async def _query(
        self,
        source: TranslationSource,
        external_ids: Sequence[str],
        language: str,
        *,
        batch_index: int,
    ) -> dict[str, SourceRecord] | None:
        """Query one source for one batch; ``None`` means the source is unavailable."""
        attempt = batch_retry(
            max_attempts=self._batch_attempts,
            wait_seconds=self._retry_wait_seconds,
            retry_on=TransportError,
        )(self._fetch_once)
        try:
            records: list[SourceRecord] = await attempt(source, external_ids, language)
        except Error as exc:
            LOGGER.warning(
                "translation_pipeline.source.unavailable",
                source=source.name,
                batch=batch_index,
                error_type=type(exc).__name__,
                error=str(exc),
                context=exc.log_safe_context(),
            )
            return None
        return {record.external_id: record for record in records}

    @staticmethod
    async def _fetch_once(
        source: TranslationSource, external_ids: Sequence[str], language: str
    ) -> list[SourceRecord]:
        result = await source.fetch_translations(external_ids, language)
        if result.is_err():
            raise result.unwrap_err()
        return result.unwrap()


__all__ = ["DEFAULT_BATCH_SIZE", "TranslationPipeline", "merge_records"]
