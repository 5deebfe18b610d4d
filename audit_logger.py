import csv
import json
import os
import threading
from datetime import datetime


class AuditLogger:
    """
    Appends learner activity (turns, generations, subject changes, logouts)
    to a CSV trail and, once a Socket.IO server is registered, broadcasts each
    entry to connected dashboards.
    """

    HEADER = ["Timestamp", "Event", "SessionID", "Subject", "MessageID", "Details"]

    def __init__(self, filename="learner_audit.csv", directory=None):
        directory = directory or os.path.join(os.path.dirname(os.path.abspath(__file__)), ".sandbox")
        self.filepath = os.path.join(directory, filename)
        self.lock = threading.Lock()
        self.socketio = None
        self._initialized = False

    def register_socketio(self, sio):
        """Allows the main app to register the Socket.IO instance."""
        self.socketio = sio

    def _ensure_file(self):
        # Called with the lock held.
        if self._initialized:
            return
        os.makedirs(os.path.dirname(self.filepath), exist_ok=True)
        if not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0:
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(self.HEADER)
        self._initialized = True

    def log_event(self, event, session_id=None, subject=None, message_id=None, details=None):
        """Writes one row. Subjects may be passed as enum members or plain strings."""
        subject_str = getattr(subject, "value", subject) or "N/A"
        details_str = json.dumps(details) if details is not None else ""
        row = [datetime.now().isoformat(), event, session_id or "N/A", subject_str, message_id or "N/A", details_str]

        with self.lock:
            self._ensure_file()
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                csv.writer(f, quoting=csv.QUOTE_ALL).writerow(row)

            if self.socketio:
                payload = {
                    "event": event,
                    "session_id": session_id,
                    "subject": subject_str,
                    "message_id": message_id,
                    "details": details,
                }
                self.socketio.start_background_task(self.socketio.emit, "new_audit_event", payload)


# Create a single, global instance to be used by the server
audit_log = AuditLogger()
