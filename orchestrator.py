"""
Core turn orchestration for the tutor.

The ConversationController owns the message timeline, the active subject and
the current concept graph for one learner session. Every user intent (send a
message, generate an image, switch subject, log out) enters through one of
its methods, and every mutation is followed by a state snapshot published to
the presentation shell.

A text turn moves Idle -> Sending -> Streaming -> Idle. An image turn moves
Idle -> ImageSending -> Idle. Only one of these may be in flight at a time;
intents arriving while busy are ignored. Concept graphs are produced by a
detached task whose result is queued and applied by apply_side_effects(),
never by the task itself.
"""
import enum
import logging
import queue
from typing import Any, Callable, Optional

from concept_graph import should_generate_concept_graph, topic_for
from config import (
    GREETING_TEXT,
    IMAGE_APOLOGY_TEXT,
    IMAGE_PROMPT_PREFIX,
    IMAGE_REPLY_TEXT,
    STREAM_APOLOGY_TEXT,
    STREAM_IDLE_TIMEOUT_SECONDS,
)
from credential_store import CredentialStore
from data_models import (
    Attachment,
    ConceptGraph,
    HistoryTurn,
    ImagePayload,
    Message,
    Sender,
    Subject,
    UserProfile,
)
from errors import CredentialMissing, PersistenceError
from profile_store import ProfileStore
from provider import AIProviderClient
from session_counters import SessionCounters
from session_models import ChatSnapshot, SubjectInfo
from streaming import Spawner, StreamPump, thread_spawner
from subjects import SUBJECT_PROFILES, mode_label

# Events published to the presentation shell.
STATE_UPDATE = "state_update"
CREDENTIAL_REQUIRED = "credential_required"
GENERATION_FAILED = "generation_failed"

CREDENTIAL_PROMPT = "Please enter a valid API Key to continue."

Listener = Callable[[str, Any], None]


class TurnState(str, enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    IMAGE_SENDING = "image_sending"


def greeting_message() -> Message:
    return Message(sender=Sender.BOT, text=GREETING_TEXT)


def subject_info(subject: Subject) -> SubjectInfo:
    profile = SUBJECT_PROFILES[subject]
    return SubjectInfo(subject=subject, icon=profile.icon, color=profile.color, mode=mode_label(subject))


class ConversationController:
    def __init__(
        self,
        provider: AIProviderClient,
        credentials: CredentialStore,
        counters: SessionCounters,
        profiles: ProfileStore,
        listener: Optional[Listener] = None,
        spawn: Spawner = thread_spawner,
        audit: Optional[Any] = None,
        session_id: Optional[str] = None,
        stream_idle_timeout: Optional[float] = STREAM_IDLE_TIMEOUT_SECONDS,
    ):
        """
        Args:
            provider: The AI provider used for chat, concept graphs and images.
            credentials: Gate checked before every provider call.
            counters: Per-subject turn counters, persisted on every increment.
            profiles: Durable storage for the learner profile.
            listener: Receives (event_name, payload) for snapshots and signals.
            spawn: Launches background tasks (stream producer, concept graphs).
            audit: Optional AuditLogger recording learner activity.
            session_id: Identifies this session in the audit trail.
            stream_idle_timeout: Seconds to wait for each streamed event.
        """
        self.provider = provider
        self.credentials = credentials
        self.counters = counters
        self.profiles = profiles
        self.listener = listener
        self.spawn = spawn
        self.audit = audit
        self.session_id = session_id
        self.stream_idle_timeout = stream_idle_timeout

        self.messages: list[Message] = [greeting_message()]
        self.active_subject = Subject.GENERAL
        self.concept_graph: Optional[ConceptGraph] = None
        self.state = TurnState.IDLE
        self.pending_image: Optional[ImagePayload] = None
        self.profile: Optional[UserProfile] = None
        self.logged_in = False

        self._graph_results: "queue.Queue[tuple[int, ConceptGraph]]" = queue.Queue()
        # Advanced on subject switch and logout; graphs requested under an older value are dropped.
        self._graph_epoch = 0
        # Advanced on logout; a turn started under an older value stops touching the timeline.
        self._session_epoch = 0

    @property
    def busy(self) -> bool:
        return self.state is not TurnState.IDLE

    @property
    def needs_login(self) -> bool:
        return not self.logged_in

    # --- Publishing ---

    def _emit(self, event: str, payload: Any) -> None:
        if self.listener:
            self.listener(event, payload)

    def _publish(self) -> None:
        self._emit(STATE_UPDATE, self.snapshot())

    def _audit(self, event: str, message_id: Optional[str] = None, details: Optional[dict] = None) -> None:
        if self.audit:
            self.audit.log_event(event, session_id=self.session_id, subject=self.active_subject, message_id=message_id, details=details)

    def snapshot(self) -> ChatSnapshot:
        """Returns a detached copy of everything the shell renders."""
        return ChatSnapshot(
            messages=[message.model_copy(deep=True) for message in self.messages],
            active_subject=subject_info(self.active_subject),
            subjects=[subject_info(subject) for subject in Subject],
            concept_graph=self.concept_graph if len(self.messages) > 1 else None,
            is_typing=self.state in (TurnState.SENDING, TurnState.STREAMING),
            is_generating_image=self.state is TurnState.IMAGE_SENDING,
            has_pending_attachment=self.pending_image is not None,
            profile=self.profile,
            logged_in=self.logged_in,
            needs_login=self.needs_login,
            session_counts=self.counters.as_dict(),
        )

    # --- Login and profile ---

    def restore(self) -> bool:
        """
        Loads the saved profile and counters at startup.

        Returns:
            True if the learner can skip the login screen, which requires both
            a saved profile and an available credential.
        """
        self.counters.load()
        self.profile = self.profiles.load()
        self.logged_in = self.profile is not None and self.credentials.has_access()
        self._publish()
        return self.logged_in

    def login(self, profile: UserProfile, api_key: Optional[str] = None) -> None:
        """Saves the profile, stores a supplied key and leaves the login screen. PersistenceError propagates."""
        saved = self.profiles.save(profile)
        if api_key:
            self.credentials.set_user_credential(api_key)
        self.profile = saved
        self.logged_in = True
        self._publish()

    def update_profile(self, profile: UserProfile) -> None:
        self.profile = self.profiles.save(profile)
        self._publish()

    def set_credential(self, api_key: str) -> None:
        self.credentials.set_user_credential(api_key)
        self._publish()

    def attach_image(self, image: ImagePayload) -> None:
        self.pending_image = image
        self._publish()

    def clear_attachment(self) -> None:
        self.pending_image = None
        self._publish()

    # --- Turns ---

    def _history(self) -> list[HistoryTurn]:
        return [
            HistoryTurn(role="user" if message.sender is Sender.USER else "model", text=message.text)
            for message in self.messages
            if not message.is_streaming
        ]

    def _count_turn(self, subject: Subject) -> None:
        # The in-memory count is updated even if the write fails.
        try:
            self.counters.increment(subject)
        except PersistenceError as e:
            logging.error(f"Could not persist session counters: {e}")

    def _credential_missing(self, placeholder: Optional[Message]) -> None:
        if placeholder is not None:
            self.messages = [message for message in self.messages if message.id != placeholder.id]
        self.state = TurnState.IDLE
        self.logged_in = False
        logging.warning("AI provider credential missing or rejected; asking the learner for an API key.")
        self._audit("Credential Missing")
        self._emit(CREDENTIAL_REQUIRED, {"message": CREDENTIAL_PROMPT})
        self._publish()

    def send_text(self, text: str, image: Optional[ImagePayload] = None) -> bool:
        """
        Sends a learner message and streams the tutor's reply into the timeline.

        The message uses the explicitly given image, or else the pending
        attachment. Empty submissions and submissions while busy are ignored.

        Returns:
            True if the turn was accepted (whatever its outcome), False if ignored.
        """
        self.apply_side_effects()
        image = image or self.pending_image
        if self.busy:
            logging.info("Ignoring send: a generation is already in flight.")
            return False
        if not (text and text.strip()) and image is None:
            return False

        subject = self.active_subject
        epoch = self._session_epoch
        history = self._history()
        self._count_turn(subject)

        user_message = Message(
            sender=Sender.USER,
            text=text,
            attachments=[Attachment.from_payload(image)] if image is not None else [],
        )
        self.messages.append(user_message)
        self.pending_image = None
        self.state = TurnState.SENDING
        self._audit("Turn Accepted", user_message.id, {"kind": "text", "has_image": image is not None})
        self._publish()

        try:
            self.credentials.require()
        except CredentialMissing:
            self._credential_missing(None)
            return True

        bot_message = Message(sender=Sender.BOT, is_streaming=True)
        self.messages.append(bot_message)
        self.state = TurnState.STREAMING
        self._publish()

        pump = StreamPump(
            lambda: self.provider.stream_chat(subject, history, text, image),
            spawn=self.spawn,
            idle_timeout=self.stream_idle_timeout,
        )
        for event in pump:
            if epoch != self._session_epoch:
                logging.info("Session was reset while streaming; abandoning the turn.")
                pump.cancel()
                return True

            if event.kind == "fragment":
                if bot_message.append_fragment(event.text, event.grounding_urls):
                    self._publish()
            elif event.kind == "error" and event.reason == "credential_missing":
                self._credential_missing(bot_message)
            elif event.kind == "error":
                bot_message.settle(STREAM_APOLOGY_TEXT)
                self.state = TurnState.IDLE
                self._audit("Stream Failed", bot_message.id, {"detail": event.detail})
                self._emit(GENERATION_FAILED, {"message_id": bot_message.id, "detail": event.detail})
                self._publish()
            else:
                bot_message.settle()
                self.state = TurnState.IDLE
                self._audit("Stream Settled", bot_message.id, {"chars": len(bot_message.text), "sources": len(bot_message.grounding_urls)})
                self._publish()
                self._maybe_request_concept_graph(subject, text, bot_message.text)
        return True

    def generate_image(self, prompt: str) -> bool:
        """
        Generates an illustration from a text prompt.

        Returns:
            True if the request was accepted, False if it was empty or the
            controller was busy.
        """
        self.apply_side_effects()
        if self.busy:
            logging.info("Ignoring image request: a generation is already in flight.")
            return False
        if not (prompt and prompt.strip()):
            return False

        epoch = self._session_epoch
        self._count_turn(self.active_subject)
        user_message = Message(sender=Sender.USER, text=f"{IMAGE_PROMPT_PREFIX}{prompt}")
        self.messages.append(user_message)
        self.state = TurnState.IMAGE_SENDING
        self._audit("Turn Accepted", user_message.id, {"kind": "image"})
        self._publish()

        try:
            self.credentials.require()
            image_bytes = self.provider.generate_image(prompt)
        except CredentialMissing:
            if epoch == self._session_epoch:
                self._credential_missing(None)
            return True
        except Exception as e:
            if epoch != self._session_epoch:
                return True
            logging.exception(f"Image generation failed: {e}")
            reply = Message(sender=Sender.BOT, text=IMAGE_APOLOGY_TEXT)
            self.messages.append(reply)
            self.state = TurnState.IDLE
            self._audit("Image Failed", reply.id, {"detail": str(e)})
            self._emit(GENERATION_FAILED, {"message_id": reply.id, "detail": str(e)})
            self._publish()
            return True

        if epoch != self._session_epoch:
            return True
        reply = Message(
            sender=Sender.BOT,
            text=IMAGE_REPLY_TEXT,
            attachments=[Attachment(data=image_bytes, mime_type="image/jpeg")],
        )
        self.messages.append(reply)
        self.state = TurnState.IDLE
        self._audit("Image Generated", reply.id, {"bytes": len(image_bytes)})
        self._publish()
        return True

    # --- Concept graph side effect ---

    def _maybe_request_concept_graph(self, subject: Subject, user_text: str, response_text: str) -> None:
        if not should_generate_concept_graph(subject, len(response_text)):
            return
        topic = topic_for(user_text)
        self._audit("Concept Graph Requested", details={"topic": topic})
        self.spawn(self._run_concept_graph, topic, self._graph_epoch)

    def _run_concept_graph(self, topic: str, epoch: int) -> None:
        # Runs detached from the turn. Results reach the controller only through the queue.
        try:
            self.credentials.require()
            graph = self.provider.generate_concept_graph(topic)
        except Exception as e:
            logging.warning(f"Concept graph for '{topic}' was dropped: {e}")
            self._audit("Concept Graph Dropped", details={"topic": topic, "error": str(e)})
            return
        self._graph_results.put((epoch, graph))

    def apply_side_effects(self) -> bool:
        """
        Applies any finished concept graphs. Safe to call at any time.

        Returns:
            True if the current graph changed.
        """
        applied = False
        while True:
            try:
                epoch, graph = self._graph_results.get_nowait()
            except queue.Empty:
                break
            if epoch != self._graph_epoch:
                logging.info("Discarding a concept graph requested before the subject changed.")
                continue
            self.concept_graph = graph
            applied = True
        if applied:
            self._audit("Concept Graph Applied", details={"nodes": len(self.concept_graph.nodes)})
            self._publish()
        return applied

    # --- Navigation ---

    def switch_subject(self, subject: Subject) -> bool:
        """Changes subject and clears the concept graph. Ignored while a generation is in flight."""
        self.apply_side_effects()
        if self.busy:
            logging.info("Ignoring subject switch: a generation is already in flight.")
            return False
        if subject is not self.active_subject:
            self._audit("Subject Switched", details={"from": self.active_subject.value, "to": subject.value})
        self.active_subject = subject
        self.concept_graph = None
        self._graph_epoch += 1
        self._publish()
        return True

    def logout(self) -> None:
        """
        Resets the session to the greeting and erases the saved profile.

        Counters and the stored credential are kept. A PersistenceError while
        erasing the profile propagates after the in-memory reset is published.
        """
        self._audit("Logout")
        self._session_epoch += 1
        self._graph_epoch += 1
        self.messages = [greeting_message()]
        self.active_subject = Subject.GENERAL
        self.concept_graph = None
        self.pending_image = None
        self.state = TurnState.IDLE
        self.profile = None
        self.logged_in = False
        try:
            self.profiles.clear()
        finally:
            self._publish()
