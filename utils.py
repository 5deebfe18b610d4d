"""
Provides common, stateless utility functions used across the application.
"""
import itertools
import time

_id_sequence = itertools.count()


def new_message_id() -> str:
    """Returns a unique, time-ordered message id: milliseconds since the epoch plus a process-wide sequence."""
    return f"{int(time.time() * 1000)}-{next(_id_sequence):06d}"
