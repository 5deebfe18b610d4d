"""
Main application bootstrap file.

This script initializes the Flask application and the SocketIO server, builds
the shared storage, credential store and Gemini client, and registers the
SocketIO event handlers that give each connected learner a conversation
controller.
"""
import eventlet

eventlet.monkey_patch()

import logging

import debugpy
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

import events
from audit_logger import audit_log
from config import DEBUG_MODE, SERVER_PORT, STORAGE_PATH
from credential_store import CredentialStore, load_deployment_key
from gemini_client import GeminiProviderClient
from orchestrator import ConversationController, Listener
from profile_store import ProfileStore
from session_counters import SessionCounters
from storage import JsonFileStore

# --- CONFIGURATION ---
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="eventlet")
audit_log.register_socketio(socketio)

# --- SHARED SERVICES ---
storage = JsonFileStore(STORAGE_PATH)
credentials = CredentialStore(storage, deployment_key=load_deployment_key())
provider = GeminiProviderClient(credentials)

if credentials.deployment_key:
    logging.info("Using the deployment-provided API key.")
elif not credentials.has_access():
    logging.warning("No API key configured yet; learners will be asked for one at login.")


def build_controller(sid: str, listener: Listener) -> ConversationController:
    """Creates the controller for one connected client."""
    return ConversationController(
        provider=provider,
        credentials=credentials,
        counters=SessionCounters(storage),
        profiles=ProfileStore(storage),
        listener=listener,
        spawn=socketio.start_background_task,
        audit=audit_log,
        session_id=sid,
    )


events.register_events(socketio, build_controller)


# --- SERVER ROUTES ---
@app.route("/")
def serve_index():
    """Serves the chat interface."""
    return send_from_directory(".", "index.html")


@app.route("/api/progress")
def serve_progress():
    """Returns the learning dashboard as JSON."""
    counters = SessionCounters(storage)
    counters.load()
    return jsonify(counters.progress().model_dump(mode="json"))


# --- MAIN EXECUTION ---
if __name__ == "__main__":
    if DEBUG_MODE:
        debugpy.listen(("0.0.0.0", 5678))
        app.logger.info("Debugpy server listening. Waiting for debugger to attach...")
        debugpy.wait_for_client()
        app.logger.info("Debugger attached.")

    app.logger.info(f"Starting Lumina tutor server on http://127.0.0.1:{SERVER_PORT}")
    socketio.run(app, port=SERVER_PORT)
