from data_models import StreamCompletion, StreamError, StreamFragment
from errors import CredentialMissing, ProviderError
from streaming import StreamPump, thread_spawner


def run_inline(fn, *args):
    fn(*args)


def never_start(fn, *args):
    pass


def test_fragments_are_followed_by_completion():
    fragments = [StreamFragment(text="a"), StreamFragment(text="b")]

    events = list(StreamPump(lambda: iter(fragments), spawn=run_inline))

    assert events == fragments + [StreamCompletion()]


def test_credential_failure_becomes_credential_missing_event():
    def source():
        yield StreamFragment(text="partial")
        raise CredentialMissing("API key not valid")

    events = list(StreamPump(source, spawn=run_inline))

    assert events[0] == StreamFragment(text="partial")
    assert events[1].kind == "error"
    assert events[1].reason == "credential_missing"
    assert len(events) == 2


def test_errors_opening_the_stream_are_captured():
    def source():
        raise ProviderError("connection refused")

    events = list(StreamPump(source, spawn=run_inline))

    assert events == [StreamError(reason="provider_error", detail="connection refused")]


def test_silent_producer_times_out():
    events = list(StreamPump(lambda: iter([]), spawn=never_start, idle_timeout=0.01))

    assert len(events) == 1
    assert events[0].reason == "provider_error"


def test_thread_spawner_runs_the_producer():
    fragments = [StreamFragment(text=str(n)) for n in range(5)]

    events = list(StreamPump(lambda: iter(fragments), spawn=thread_spawner, idle_timeout=5))

    assert [e.text for e in events[:-1]] == ["0", "1", "2", "3", "4"]
    assert isinstance(events[-1], StreamCompletion)


def deferred(tasks):
    def spawn(fn, *args):
        tasks.append((fn, args))

    return spawn


def test_producer_stops_pulling_after_cancel():
    tasks, pulled, closed = [], [], []
    pumps = []

    def source():
        try:
            for n in range(100):
                pulled.append(n)
                if n == 1:
                    pumps[0].cancel()
                yield StreamFragment(text=str(n))
        finally:
            closed.append(True)

    pumps.append(StreamPump(source, spawn=deferred(tasks), idle_timeout=0.01))
    fn, args = tasks[0]
    fn(*args)

    assert pulled == [0, 1]
    assert closed == [True]
    events = list(pumps[0])
    assert events[0] == StreamFragment(text="0")
    assert events[1].reason == "provider_error"


def test_timed_out_consumer_leaves_provider_unopened():
    tasks, opened = [], []

    def source():
        opened.append(True)
        return iter([StreamFragment(text="late")])

    pump = StreamPump(source, spawn=deferred(tasks), idle_timeout=0.01)
    assert list(pump)[0].reason == "provider_error"

    fn, args = tasks[0]
    fn(*args)

    assert opened == []
    assert pump._events.empty()
