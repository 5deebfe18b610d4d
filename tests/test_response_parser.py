import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from errors import ProviderError
from response_parser import extract_json_object, parse_concept_graph, parse_stream_chunk

# --- Test Data Loading ---


def load_test_cases():
    """Loads concept map cases from the JSON file."""
    json_path = Path(__file__).parent / "test_data" / "concept_graph_cases.json"
    with open(json_path, "r") as f:
        test_cases = json.load(f)

    # pytest.mark.parametrize expects a list of (name, input, expected) tuples.
    return [(case, test_cases[case]["response_text"], test_cases[case]["expected_output"]) for case in test_cases]


@pytest.mark.parametrize("name, test_input, expected", load_test_cases())
def test_parse_concept_graph(name, test_input, expected):
    graph = parse_concept_graph(test_input)

    assert graph.model_dump() == expected


@pytest.mark.parametrize(
    "text",
    [
        None,
        "",
        "I could not build a map for that topic.",
        '{"nodes": [], "links": []}',
        '{"nodes": [{"id": "  "}], "links": []}',
    ],
)
def test_parse_concept_graph_rejects_unusable_output(text):
    with pytest.raises(ProviderError):
        parse_concept_graph(text)


def test_extract_json_object_skips_broken_fence():
    text = '```json\n{"broken": \n```\nand later {"ok": true}'
    assert extract_json_object(text) == {"ok": True}


# --- Stream chunks ---


def grounded_chunk(text, *uris):
    chunks = [SimpleNamespace(web=SimpleNamespace(uri=uri)) for uri in uris]
    candidate = SimpleNamespace(grounding_metadata=SimpleNamespace(grounding_chunks=chunks))
    return SimpleNamespace(text=text, candidates=[candidate])


def test_parse_stream_chunk_reads_text_and_sources():
    chunk = grounded_chunk("Rome fell in 476.", "https://example.org/rome", "https://example.org/goths")

    fragment = parse_stream_chunk(chunk)

    assert fragment.text == "Rome fell in 476."
    assert fragment.grounding_urls == ["https://example.org/rome", "https://example.org/goths"]


def test_parse_stream_chunk_without_text_part():
    class MetadataOnlyChunk:
        candidates = []

        @property
        def text(self):
            raise ValueError("The `response.text` quick accessor only works when the response contains a valid `Part`.")

    fragment = parse_stream_chunk(MetadataOnlyChunk())

    assert fragment.text == ""
    assert fragment.grounding_urls == []


def test_parse_stream_chunk_ignores_chunks_without_web_sources():
    chunk = MagicMock()
    chunk.text = "Hello"
    chunk.candidates = [SimpleNamespace(grounding_metadata=None)]

    fragment = parse_stream_chunk(chunk)

    assert fragment.text == "Hello"
    assert fragment.grounding_urls == []
