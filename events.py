"""
Handles all SocketIO event logic for the application.

This module is the seam between the browser shell and the conversation
controllers. Each connected client gets its own controller; client events are
translated into controller calls, and everything the controller publishes is
forwarded to that client. It is designed to be registered by lumina.py.
"""

import base64
import logging
from typing import Any, Callable, Optional

from flask import request
from flask_socketio import SocketIO
from pydantic import BaseModel

from config import SIDE_EFFECT_POLL_SECONDS
from data_models import ImagePayload, Subject, UserProfile
from errors import PersistenceError
from orchestrator import ConversationController, Listener
from profile_store import avatar_from_upload, build_profile
from session_models import LearnerSession

# --- Module-level state ---
# Live sessions keyed by Socket.IO session id.
learner_sessions: dict[str, LearnerSession] = {}
_poller_started = False

ControllerFactory = Callable[[str, Listener], ConversationController]

PROFILE_SAVE_FAILED = "Failed to save profile. Image might be too large."


def _serialize(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return payload


def _make_listener(socketio: SocketIO, sid: str) -> Listener:
    def listener(event: str, payload: Any) -> None:
        socketio.emit(event, _serialize(payload), to=sid)

    return listener


def _profile_from_payload(data: dict) -> UserProfile:
    """
    Builds a profile from the login/profile form.

    Expected keys: 'name', and optionally 'avatar' (a URL or data URI kept as
    is) or 'avatar_upload' (base64 image bytes, shrunk before storing).

    Raises:
        ValueError: If the name is blank or the upload is not an image.
    """
    name = (data.get("name") or "").strip()
    avatar = data.get("avatar") or None
    upload = data.get("avatar_upload")
    if upload:
        if upload.startswith("data:") and "," in upload:
            upload = upload.split(",", 1)[1]
        avatar = avatar_from_upload(base64.b64decode(upload))
    return build_profile(name, avatar)


def poll_side_effects(socketio: SocketIO) -> None:
    """Background loop delivering finished concept graphs to their sessions."""
    while True:
        for session in list(learner_sessions.values()):
            try:
                session.controller.apply_side_effects()
            except Exception as e:
                logging.exception(f"Failed to apply side effects for {session.sid}: {e}")
        socketio.sleep(SIDE_EFFECT_POLL_SECONDS)


def register_events(socketio: SocketIO, controller_factory: ControllerFactory, start_poller: bool = True) -> None:
    """
    Registers all SocketIO event handlers with the main application.

    Args:
        socketio: The server instance.
        controller_factory: Builds a controller for (sid, listener).
        start_poller: Whether the first connection starts the side-effect poller.
    """

    def _controller() -> Optional[ConversationController]:
        session = learner_sessions.get(request.sid)
        if not session:
            socketio.emit("log_message", {"type": "error", "data": "No active session. Please refresh."}, to=request.sid)
            return None
        return session.controller

    def _persistence_error(e: PersistenceError, message: str) -> None:
        logging.error(f"Persistence failure for {request.sid}: {e}")
        socketio.emit("persistence_error", {"message": message}, to=request.sid)

    @socketio.on("connect")
    def handle_connect(auth=None) -> None:
        """Creates a controller for the new client and restores any saved profile."""
        global _poller_started
        sid = request.sid
        logging.info(f"Client connected: {sid}")
        try:
            controller = controller_factory(sid, _make_listener(socketio, sid))
            learner_sessions[sid] = LearnerSession(sid=sid, controller=controller)
            if not controller.restore():
                socketio.emit("login_required", {"has_profile": controller.profile is not None}, to=sid)
        except Exception as e:
            logging.exception(f"Could not create session for {sid}: {e}")
            socketio.emit("log_message", {"type": "error", "data": "Failed to initialize session."}, to=sid)
            return

        if start_poller and not _poller_started:
            _poller_started = True
            socketio.start_background_task(poll_side_effects, socketio)

    @socketio.on("disconnect")
    def handle_disconnect(reason=None) -> None:
        sid = request.sid
        if learner_sessions.pop(sid, None):
            logging.info(f"Client disconnected: {sid}")

    @socketio.on("login")
    def handle_login(data: dict) -> None:
        """
        Args:
            data: {"name": str, "avatar"?: str, "avatar_upload"?: base64 str, "api_key"?: str}
        """
        controller = _controller()
        if not controller:
            return
        try:
            profile = _profile_from_payload(data)
        except ValueError as e:
            socketio.emit("log_message", {"type": "error", "data": f"Invalid profile: {e}"}, to=request.sid)
            return
        try:
            controller.login(profile, data.get("api_key"))
        except PersistenceError as e:
            _persistence_error(e, PROFILE_SAVE_FAILED)

    @socketio.on("update_profile")
    def handle_update_profile(data: dict) -> None:
        controller = _controller()
        if not controller:
            return
        try:
            profile = _profile_from_payload(data)
        except ValueError as e:
            socketio.emit("log_message", {"type": "error", "data": f"Invalid profile: {e}"}, to=request.sid)
            return
        try:
            controller.update_profile(profile)
        except PersistenceError as e:
            _persistence_error(e, PROFILE_SAVE_FAILED)

    @socketio.on("set_api_key")
    def handle_set_api_key(data: dict) -> None:
        controller = _controller()
        if not controller:
            return
        try:
            controller.set_credential(data.get("api_key", ""))
        except PersistenceError as e:
            _persistence_error(e, "Failed to save the API key.")

    @socketio.on("attach_image")
    def handle_attach_image(data: dict) -> None:
        """
        Args:
            data: {"data": base64 str or data URI, "mime_type": str}
        """
        controller = _controller()
        if not controller:
            return
        try:
            image = ImagePayload.from_base64(data["data"], data.get("mime_type") or "image/jpeg")
        except (KeyError, ValueError) as e:
            socketio.emit("log_message", {"type": "error", "data": f"Could not read the attached image: {e}"}, to=request.sid)
            return
        controller.attach_image(image)

    @socketio.on("clear_attachment")
    def handle_clear_attachment() -> None:
        controller = _controller()
        if controller:
            controller.clear_attachment()

    @socketio.on("send_message")
    def handle_send_message(data: dict) -> None:
        """
        Starts a text turn in a background task to keep the server responsive.

        Args:
            data: {"text": str}
        """
        controller = _controller()
        if controller:
            socketio.start_background_task(controller.send_text, data.get("text") or "")

    @socketio.on("generate_image")
    def handle_generate_image(data: dict) -> None:
        controller = _controller()
        if controller:
            socketio.start_background_task(controller.generate_image, data.get("prompt") or "")

    @socketio.on("switch_subject")
    def handle_switch_subject(data: dict) -> None:
        controller = _controller()
        if not controller:
            return
        try:
            subject = Subject.lookup(data.get("subject") or "")
        except ValueError as e:
            socketio.emit("log_message", {"type": "error", "data": str(e)}, to=request.sid)
            return
        controller.switch_subject(subject)

    @socketio.on("logout")
    def handle_logout() -> None:
        controller = _controller()
        if not controller:
            return
        try:
            controller.logout()
        except PersistenceError as e:
            _persistence_error(e, "Failed to erase the saved profile.")
        socketio.emit("login_required", {"has_profile": False}, to=request.sid)

    @socketio.on("request_snapshot")
    def handle_request_snapshot() -> None:
        controller = _controller()
        if controller:
            controller.apply_side_effects()
            socketio.emit("state_update", _serialize(controller.snapshot()), to=request.sid)

    @socketio.on("request_progress")
    def handle_request_progress() -> None:
        controller = _controller()
        if controller:
            controller.counters.load()
            socketio.emit("progress_update", _serialize(controller.counters.progress()), to=request.sid)
