"""
Defines the high-level data structures for a learner's session.

ChatSnapshot is the complete, serializable view of one controller that the
presentation shell renders from. LearnerSession bundles a live controller
with the Socket.IO connection it belongs to.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from data_models import ConceptGraph, Message, Subject, UserProfile


class SubjectInfo(BaseModel):
    subject: Subject
    icon: str
    color: str
    mode: str


class ChatSnapshot(BaseModel):
    messages: list[Message]
    active_subject: SubjectInfo
    subjects: list[SubjectInfo]
    # Only populated once the conversation holds more than the greeting.
    concept_graph: Optional[ConceptGraph] = None
    is_typing: bool = False
    is_generating_image: bool = False
    has_pending_attachment: bool = False
    profile: Optional[UserProfile] = None
    logged_in: bool = False
    needs_login: bool = True
    session_counts: dict[str, int]


class LearnerSession(BaseModel):
    """
    Represents a live client connection with its controller.
    """

    # The controller is a plain class, not a pydantic model.
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # The Socket.IO session id of the connected client.
    sid: str
    controller: Any
