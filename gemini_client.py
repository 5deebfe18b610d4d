"""
Gemini implementation of the AI provider interface.

Chat streaming and concept-map generation go through the Gemini API with the
learner's API key. Image generation calls Imagen through the google-genai
client, authorized by the same key. The chat SDK is set to the REST
transport so its calls yield under eventlet. Every call checks for a
credential first, and every SDK exception is translated into
CredentialMissing or ProviderError before it leaves this module.
"""
import logging
from typing import Iterator, Optional, TypedDict

import google.generativeai as genai
from google import genai as imagen
from google.api_core import exceptions as google_exceptions
from google.genai import errors as imagen_errors
from google.genai import types as imagen_types

from concept_graph import concept_map_prompt
from config import (
    CONCEPT_MAP_MODEL_NAME,
    IMAGE_MODEL_NAME,
    REQUEST_TIMEOUT_SECONDS,
    SAFETY_SETTINGS,
)
from credential_store import CredentialStore
from data_models import ConceptGraph, HistoryTurn, ImagePayload, StreamFragment, Subject
from errors import CredentialMissing, ProviderError
from provider import AIProviderClient
from response_parser import parse_concept_graph, parse_stream_chunk
from subjects import profile_for


# Response schema for the concept map, expressed the way the SDK expects it.
class ConceptNodeSchema(TypedDict):
    id: str
    group: int
    val: int


class ConceptLinkSchema(TypedDict):
    source: str
    target: str
    value: int


class ConceptMapSchema(TypedDict):
    nodes: list[ConceptNodeSchema]
    links: list[ConceptLinkSchema]


def translate_error(error: Exception) -> Exception:
    """Maps an SDK exception onto the application's error taxonomy."""
    if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return CredentialMissing(str(error))
    if isinstance(error, imagen_errors.APIError) and error.code in (401, 403):
        return CredentialMissing(str(error))
    if "API key" in str(error) or "API_KEY" in str(error):
        return CredentialMissing(str(error))
    return ProviderError(str(error))


def to_gemini_history(history: list[HistoryTurn]) -> list[dict]:
    # The API rejects empty parts, so image-only turns contribute no history entry.
    return [{"role": turn.role, "parts": [turn.text]} for turn in history if turn.text]


class GeminiProviderClient(AIProviderClient):
    def __init__(self, credentials: CredentialStore):
        self.credentials = credentials
        self._configured_key: Optional[str] = None
        self._image_client = None
        self._image_client_key: Optional[str] = None

    def _configure(self) -> None:
        """Points the SDK at the current key. Raises CredentialMissing before any network call."""
        key = self.credentials.require()
        if key != self._configured_key:
            genai.configure(api_key=key, transport="rest")
            self._configured_key = key
            logging.info("Gemini API configured with the current credential.")

    def _imagen_client(self):
        key = self.credentials.require()
        if self._image_client is None or key != self._image_client_key:
            self._image_client = imagen.Client(
                api_key=key,
                http_options=imagen_types.HttpOptions(timeout=REQUEST_TIMEOUT_SECONDS * 1000),
            )
            self._image_client_key = key
        return self._image_client

    def _build_chat_model(self, subject: Subject):
        profile = profile_for(subject)
        tools = None
        if profile.grounding:
            tools = [genai.protos.Tool(google_search=genai.protos.Tool.GoogleSearch())]
        return genai.GenerativeModel(
            model_name=profile.model_name,
            system_instruction=profile.system_instruction,
            safety_settings=SAFETY_SETTINGS,
            tools=tools,
        )

    def stream_chat(
        self,
        subject: Subject,
        history: list[HistoryTurn],
        text: str,
        image: Optional[ImagePayload] = None,
    ) -> Iterator[StreamFragment]:
        try:
            self._configure()
            chat = self._build_chat_model(subject).start_chat(history=to_gemini_history(history))
            content = text
            if image is not None:
                content = [{"mime_type": image.mime_type, "data": image.data}, text]
            response = chat.send_message(content, stream=True, request_options={"timeout": REQUEST_TIMEOUT_SECONDS})
            for chunk in response:
                yield parse_stream_chunk(chunk)
        except (CredentialMissing, ProviderError):
            raise
        except Exception as e:
            raise translate_error(e) from e

    def generate_concept_graph(self, topic: str) -> ConceptGraph:
        try:
            self._configure()
            model = genai.GenerativeModel(CONCEPT_MAP_MODEL_NAME)
            response = model.generate_content(
                concept_map_prompt(topic),
                generation_config=genai.GenerationConfig(
                    response_mime_type="application/json",
                    response_schema=ConceptMapSchema,
                ),
                request_options={"timeout": REQUEST_TIMEOUT_SECONDS},
            )
            return parse_concept_graph(response.text)
        except (CredentialMissing, ProviderError):
            raise
        except Exception as e:
            raise translate_error(e) from e

    def generate_image(self, prompt: str) -> bytes:
        try:
            response = self._imagen_client().models.generate_images(
                model=IMAGE_MODEL_NAME,
                prompt=prompt,
                config=imagen_types.GenerateImagesConfig(
                    number_of_images=1,
                    aspect_ratio="1:1",
                    output_mime_type="image/jpeg",
                ),
            )
            generated = list(response.generated_images or [])
            image = generated[0].image if generated else None
            if image is None or not image.image_bytes:
                raise ProviderError("Failed to generate image")
            return image.image_bytes
        except (CredentialMissing, ProviderError):
            raise
        except Exception as e:
            raise translate_error(e) from e
