"""Translation sources backed by Wikibase SPARQL endpoints.

The primary source is the Metabase Wikibase, which maps Wikidata ids to its
own items (``wbt:P1``); the secondary source is Wikidata itself. Both ask
the ``wikibase:label`` service for ``"<language>,<fallback>"`` and report
the ``xml:lang`` tag of every literal so callers can tell a fallback
translation from a native one.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, cast

import structlog

from capx.gateway.http_client import JsonHttpClient
from capx.infra.result import (
    Error,
    MalformedResponseError,
    Result,
    TransportError,
    async_returns_result,
)
from capx.models.capacity_models import SourceRecord, is_entity_id

LOGGER = structlog.get_logger(__name__)

SPARQL_HEADERS = {"Accept": "application/sparql-results+json"}


class TranslationSource(Protocol):
    name: str

    async def fetch_translations(
        self, external_ids: Sequence[str], language: str
    ) -> Result[list[SourceRecord], Error]: ...


def language_chain(language: str, fallback_language: str) -> str:
    if language == fallback_language:
        return language
    return f"{language},{fallback_language}"


def _bindings(payload: Any) -> list[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        raise MalformedResponseError("SPARQL response must be a JSON object")
    results = cast(Mapping[str, Any], payload).get("results")
    if not isinstance(results, Mapping):
        raise MalformedResponseError("SPARQL response has no 'results' object")
    bindings = cast(Mapping[str, Any], results).get("bindings")
    if not isinstance(bindings, list):
        raise MalformedResponseError("SPARQL response has no 'bindings' array")
    return [b for b in cast(list[Any], bindings) if isinstance(b, Mapping)]


def _literal(binding: Mapping[str, Any], name: str) -> tuple[str, str | None]:
    """Return ``(value, xml:lang)`` of a binding cell, or ``("", None)`` when absent."""
    cell = binding.get(name)
    if not isinstance(cell, Mapping):
        return "", None
    typed = cast(Mapping[str, Any], cell)
    value = typed.get("value")
    if not isinstance(value, str):
        return "", None
    lang = typed.get("xml:lang")
    return value.strip(), lang.lower() if isinstance(lang, str) and lang else None


def _last_segment(uri: str) -> str:
    return uri.rstrip("/").rsplit("/", 1)[-1]


def _valid_ids(external_ids: Sequence[str], *, source: str) -> list[str]:
    valid: list[str] = []
    for external_id in external_ids:
        if is_entity_id(external_id):
            if external_id not in valid:
                valid.append(external_id)
        else:
            LOGGER.warning("sparql.external_id.skipped", source=source, external_id=external_id)
    return valid


def _label(binding: Mapping[str, Any], *, entity_id: str) -> tuple[str, str | None]:
    label, label_lang = _literal(binding, "itemLabel")
    # The label service echoes the entity id when no label exists in any language.
    if label_lang is None and (is_entity_id(label) or label == entity_id):
        return "", None
    return label, label_lang


class MetabaseTranslationSource:
    """Primary source: Metabase items linked to Wikidata ids through ``P1``."""

    name = "metabase"

    def __init__(
        self,
        client: JsonHttpClient,
        *,
        endpoint: str,
        fallback_language: str = "en",
        property_prefix: str = "https://metabase.wikibase.cloud/prop/direct/",
        link_property: str = "P1",
    ) -> None:
        self._client = client
        self._endpoint = endpoint
        self._fallback_language = fallback_language
        self._property_prefix = property_prefix
        self._link_property = link_property

    def build_query(self, external_ids: Sequence[str], language: str) -> str:
        values = " ".join(f'"{external_id}"' for external_id in external_ids)
        languages = language_chain(language, self._fallback_language)
        return (
            f"PREFIX wbt: <{self._property_prefix}>\n"
            "SELECT ?item ?itemLabel ?itemDescription ?value WHERE {\n"
            f"  VALUES ?value {{ {values} }}\n"
            f"  ?item wbt:{self._link_property} ?value .\n"
            f'  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "{languages}". }}\n'
            "}"
        )

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def fetch_translations(
        self, external_ids: Sequence[str], language: str
    ) -> list[SourceRecord]:
        ids = _valid_ids(external_ids, source=self.name)
        if not ids:
            return []
        payload = await self._client.get_json(
            self._endpoint,
            params={"query": self.build_query(ids, language), "format": "json"},
            headers=SPARQL_HEADERS,
        )

        records: dict[str, SourceRecord] = {}
        for binding in _bindings(payload):
            external_id, _ = _literal(binding, "value")
            item_uri, _ = _literal(binding, "item")
            if not external_id or not item_uri:
                LOGGER.debug("sparql.binding.dropped", source=self.name, reason="missing_keys")
                continue
            alt_id = _last_segment(item_uri)
            name, name_lang = _label(binding, entity_id=alt_id)
            description, description_lang = _literal(binding, "itemDescription")
            record = SourceRecord(
                external_id=external_id,
                name=name,
                description=description,
                label_language=name_lang,
                description_language=description_lang if description else None,
                external_alt_id=alt_id,
            )
            existing = records.get(external_id)
            if existing is None or (not existing.name and record.name):
                records[external_id] = record
        return list(records.values())


class WikidataTranslationSource:
    """Secondary source: Wikidata labels and descriptions by QID."""

    name = "wikidata"

    def __init__(
        self,
        client: JsonHttpClient,
        *,
        endpoint: str,
        fallback_language: str = "en",
    ) -> None:
        self._client = client
        self._endpoint = endpoint
        self._fallback_language = fallback_language

    def build_query(self, external_ids: Sequence[str], language: str) -> str:
        values = " ".join(f"wd:{external_id}" for external_id in external_ids)
        languages = language_chain(language, self._fallback_language)
        return (
            "PREFIX wd: <http://www.wikidata.org/entity/>\n"
            "SELECT ?item ?itemLabel ?itemDescription WHERE {\n"
            f"  VALUES ?item {{ {values} }}\n"
            f'  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "{languages}". }}\n'
            "}"
        )

    @async_returns_result(TransportError, exception_map={ValueError: MalformedResponseError})
    async def fetch_translations(
        self, external_ids: Sequence[str], language: str
    ) -> list[SourceRecord]:
        ids = _valid_ids(external_ids, source=self.name)
        if not ids:
            return []
        payload = await self._client.get_json(
            self._endpoint,
            params={"query": self.build_query(ids, language), "format": "json"},
            headers=SPARQL_HEADERS,
        )

        records: dict[str, SourceRecord] = {}
        for binding in _bindings(payload):
            item_uri, _ = _literal(binding, "item")
            if not item_uri:
                LOGGER.debug("sparql.binding.dropped", source=self.name, reason="missing_item")
                continue
            external_id = _last_segment(item_uri)
            name, name_lang = _label(binding, entity_id=external_id)
            description, description_lang = _literal(binding, "itemDescription")
            records.setdefault(
                external_id,
                SourceRecord(
                    external_id=external_id,
                    name=name,
                    description=description,
                    label_language=name_lang,
                    description_language=description_lang if description else None,
                ),
            )
        return list(records.values())


__all__ = [
    "MetabaseTranslationSource",
    "TranslationSource",
    "WikidataTranslationSource",
    "language_chain",
]
