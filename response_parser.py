"""
Converts raw provider responses into validated data models.

This is the boundary between the Gemini SDK and the rest of the application:
stream chunks become StreamFragment objects and concept-map JSON becomes a
ConceptGraph. Nothing past this module touches SDK response objects.
"""
import json
import logging
import math
import re
from typing import Any, Optional

from data_models import ConceptGraph, ConceptLink, ConceptNode, StreamFragment
from errors import ProviderError

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?(\{.*?\})\s*\n?```", re.DOTALL)


def _chunk_text(chunk: Any) -> str:
    # The SDK's .text accessor raises ValueError when a chunk carries no text part
    # (for example a chunk that only holds grounding metadata).
    try:
        return chunk.text or ""
    except (ValueError, AttributeError):
        return ""


def _chunk_grounding_urls(chunk: Any) -> list[str]:
    candidates = getattr(chunk, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    urls = []
    for grounding_chunk in getattr(metadata, "grounding_chunks", None) or []:
        uri = getattr(getattr(grounding_chunk, "web", None), "uri", None)
        if isinstance(uri, str) and uri:
            urls.append(uri)
    return urls


def parse_stream_chunk(chunk: Any) -> StreamFragment:
    """Extracts the text and any web grounding URLs from one streamed response chunk."""
    return StreamFragment(text=_chunk_text(chunk), grounding_urls=_chunk_grounding_urls(chunk))


def extract_json_object(text: str) -> Optional[dict]:
    """
    Finds a JSON object in model output.

    Fenced ```json blocks are preferred. Otherwise the first position where a
    complete object decodes is used, which tolerates prose around the JSON.
    """
    for match in _FENCED_JSON.finditer(text):
        try:
            value = json.loads(match.group(1))
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            continue

    decoder = json.JSONDecoder()
    for start in (m.start() for m in re.finditer(r"\{", text)):
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    # json.loads accepts NaN and Infinity.
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return high if number > 0 else low
    return min(max(int(round(number)), low), high)


def parse_concept_graph(text: Optional[str]) -> ConceptGraph:
    """
    Builds a ConceptGraph from the model's JSON answer.

    Numbers outside the schema ranges are clamped, repeated node ids keep
    their first occurrence, and links that reference unknown nodes or point
    at themselves are dropped.

    Raises:
        ProviderError: If no JSON object or no usable node is found.
    """
    if not text:
        raise ProviderError("No data returned")
    payload = extract_json_object(text)
    if payload is None:
        raise ProviderError("Concept map response did not contain a JSON object.")

    nodes: dict[str, ConceptNode] = {}
    for raw in payload.get("nodes") or []:
        if not isinstance(raw, dict):
            continue
        node_id = str(raw.get("id") or "").strip()
        if not node_id or node_id in nodes:
            continue
        nodes[node_id] = ConceptNode(
            id=node_id,
            group=_clamp(raw.get("group"), 1, 3, 1),
            val=_clamp(raw.get("val"), 5, 20, 10),
        )
    if not nodes:
        raise ProviderError("Concept map response contained no nodes.")

    links = []
    seen = set()
    for raw in payload.get("links") or []:
        if not isinstance(raw, dict):
            continue
        source = str(raw.get("source") or "").strip()
        target = str(raw.get("target") or "").strip()
        if source not in nodes or target not in nodes or source == target or (source, target) in seen:
            continue
        seen.add((source, target))
        links.append(ConceptLink(source=source, target=target, value=_clamp(raw.get("value"), 1, 5, 1)))

    dropped = len(payload.get("links") or []) - len(links)
    if dropped:
        logging.debug(f"Dropped {dropped} concept map link(s) that did not match the node set.")
    return ConceptGraph(nodes=list(nodes.values()), links=links)
