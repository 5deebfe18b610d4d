"""
Defines the core data structures for the application using Pydantic.

This module provides centralized, validated models for the chat timeline,
the learner profile, the concept graph and the events that flow out of a
provider stream. Provider output is converted into these models at the
boundary, so the controller never has to inspect raw SDK response objects.
"""

import base64
import enum
from datetime import datetime
from pydantic import BaseModel, Field, field_serializer, field_validator
from typing import Annotated, Literal, Optional, Union

from utils import new_message_id


class Sender(str, enum.Enum):
    USER = "user"
    BOT = "bot"


class Subject(str, enum.Enum):
    GENERAL = "General Helper"
    MATH = "Mathematics"
    SCIENCE = "Science & Nature"
    HISTORY = "History & Social Studies"
    LITERATURE = "Literature & Writing"

    @classmethod
    def lookup(cls, value: str) -> "Subject":
        """Finds a subject by its display value or by its member name (case-insensitive)."""
        for subject in cls:
            if value == subject.value or value.upper() == subject.name:
                return subject
        raise ValueError(f"Unknown subject: {value!r}")


class ImagePayload(BaseModel):
    """Raw image bytes plus their MIME type, as attached by the learner or returned by the provider."""

    data: bytes
    mime_type: str = "image/jpeg"

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> "ImagePayload":
        # Accept full data URIs as well as bare base64.
        if encoded.startswith("data:") and "," in encoded:
            encoded = encoded.split(",", 1)[1]
        return cls(data=base64.b64decode(encoded), mime_type=mime_type)


class Attachment(BaseModel):
    """An image attached to a message. Attachments are never changed once set."""

    model_config = {"frozen": True}

    kind: Literal["image"] = "image"
    data: bytes
    mime_type: str

    @classmethod
    def from_payload(cls, payload: ImagePayload) -> "Attachment":
        return cls(data=payload.data, mime_type=payload.mime_type)

    @field_serializer("data", when_used="json")
    def _encode_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")


class Message(BaseModel):
    """
    One entry in the chat timeline.

    Text and grounding URLs may only change while the message is streaming.
    A streaming message settles exactly once, after which it is frozen.
    """

    id: str = Field(default_factory=new_message_id)
    sender: Sender
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    is_streaming: bool = False
    grounding_urls: list[str] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)

    def append_fragment(self, text: str, urls: list[str]) -> bool:
        """
        Concatenates a streamed fragment and merges any new grounding URLs.

        Returns:
            True if the message visibly changed.
        """
        if not self.is_streaming:
            raise RuntimeError(f"Message {self.id} is committed and cannot be modified.")
        changed = False
        if text:
            self.text += text
            changed = True
        for url in urls:
            if url not in self.grounding_urls:
                self.grounding_urls.append(url)
                changed = True
        return changed

    def settle(self, replacement_text: Optional[str] = None) -> None:
        """Ends streaming, optionally replacing the text (used for the apology on failure)."""
        if not self.is_streaming:
            raise RuntimeError(f"Message {self.id} has already settled.")
        if replacement_text is not None:
            self.text = replacement_text
        self.is_streaming = False


class HistoryTurn(BaseModel):
    """A committed message reduced to what the provider sees."""

    role: Literal["user", "model"]
    text: str


class ConceptNode(BaseModel):
    id: str
    group: int = Field(1, ge=1, le=3)
    val: int = Field(10, ge=5, le=20)


class ConceptLink(BaseModel):
    source: str
    target: str
    value: int = Field(1, ge=1, le=5)


class ConceptGraph(BaseModel):
    """Nodes and links extracted from a conversation, rendered by the shell as a force-directed map."""

    nodes: list[ConceptNode] = Field(default_factory=list)
    links: list[ConceptLink] = Field(default_factory=list)


class UserProfile(BaseModel):
    name: str
    avatar: str = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, name: str) -> str:
        if not name.strip():
            raise ValueError("Profile name must not be empty.")
        return name


class ProgressEntry(BaseModel):
    subject: Subject
    sessions: int
    score: int


class ProgressReport(BaseModel):
    """Dashboard view derived from the session counters."""

    entries: list[ProgressEntry]
    total_sessions: int
    level: int


# --- Stream events ---
# A provider stream is converted into exactly one of these per step. A stream
# yields any number of fragments followed by a single error or completion.


class StreamFragment(BaseModel):
    kind: Literal["fragment"] = "fragment"
    text: str = ""
    grounding_urls: list[str] = Field(default_factory=list)


class StreamError(BaseModel):
    kind: Literal["error"] = "error"
    reason: Literal["credential_missing", "provider_error"]
    detail: str = ""


class StreamCompletion(BaseModel):
    kind: Literal["completion"] = "completion"


StreamEvent = Annotated[Union[StreamFragment, StreamError, StreamCompletion], Field(discriminator="kind")]
