"""
The capabilities the controller needs from an AI provider.

Implementations must raise CredentialMissing when no usable key is available
(before any network traffic) or when the provider rejects the key, and
ProviderError for every other failure.
"""
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from data_models import ConceptGraph, HistoryTurn, ImagePayload, StreamFragment, Subject


class AIProviderClient(ABC):
    @abstractmethod
    def stream_chat(
        self,
        subject: Subject,
        history: list[HistoryTurn],
        text: str,
        image: Optional[ImagePayload] = None,
    ) -> Iterator[StreamFragment]:
        """
        Streams the tutor's reply to a new learner turn.

        The returned iterator is lazy and single-use; errors may be raised
        on the first or any later step.
        """

    @abstractmethod
    def generate_concept_graph(self, topic: str) -> ConceptGraph:
        ...

    @abstractmethod
    def generate_image(self, prompt: str) -> bytes:
        """Returns JPEG bytes for a single square image."""
