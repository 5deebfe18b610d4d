"""
Runs a provider stream as a producer task feeding a queue.

The controller is the queue's only consumer. The producer converts every
outcome of the provider iterator (fragment, failure, normal end) into a
stream event, so the consumer sees a plain sequence of events: any number of
fragments followed by exactly one error or completion.
"""
import logging
import queue
import threading
from typing import Any, Callable, Iterable, Iterator, Optional

from data_models import StreamCompletion, StreamError, StreamEvent, StreamFragment
from errors import CredentialMissing

Spawner = Callable[..., Any]


def thread_spawner(fn: Callable, *args: Any) -> threading.Thread:
    """Default spawner: runs fn on a daemon thread."""
    worker = threading.Thread(target=fn, args=args, daemon=True)
    worker.start()
    return worker


class StreamPump:
    def __init__(
        self,
        source: Callable[[], Iterable[StreamFragment]],
        spawn: Spawner = thread_spawner,
        idle_timeout: Optional[float] = None,
    ):
        """
        Args:
            source: Zero-argument callable returning the provider iterator. It is
                    invoked inside the producer task so that errors raised while
                    opening the stream are captured like any other failure.
            spawn: Launches the producer, e.g. socketio.start_background_task.
            idle_timeout: Seconds to wait for each next event. None waits forever.
        """
        self.idle_timeout = idle_timeout
        self._events: "queue.Queue[StreamEvent]" = queue.Queue()
        # Set once the consumer stops reading; the producer then closes the provider stream.
        self._cancelled = threading.Event()
        spawn(self._produce, source)

    def cancel(self) -> None:
        self._cancelled.set()

    def _produce(self, source: Callable[[], Iterable[StreamFragment]]) -> None:
        stream = None
        try:
            if self._cancelled.is_set():
                return
            stream = iter(source())
            for fragment in stream:
                if self._cancelled.is_set():
                    logging.info("Stream consumer stopped listening; closing the provider stream.")
                    return
                self._events.put(fragment)
        except CredentialMissing as e:
            self._events.put(StreamError(reason="credential_missing", detail=str(e)))
        except Exception as e:
            logging.exception(f"Provider stream failed: {e}")
            self._events.put(StreamError(reason="provider_error", detail=str(e)))
        else:
            self._events.put(StreamCompletion())
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def __iter__(self) -> Iterator[StreamEvent]:
        try:
            while True:
                try:
                    event = self._events.get(timeout=self.idle_timeout)
                except queue.Empty:
                    logging.error(f"No stream event received within {self.idle_timeout} seconds.")
                    yield StreamError(reason="provider_error", detail="Timed out waiting for the provider.")
                    return
                yield event
                if event.kind != "fragment":
                    return
        finally:
            self.cancel()
