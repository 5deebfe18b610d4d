import pytest

from config import API_KEY_KEY
from credential_store import CredentialStore
from data_models import ConceptGraph, ConceptLink, ConceptNode, StreamFragment
from orchestrator import STATE_UPDATE, ConversationController
from profile_store import ProfileStore
from provider import AIProviderClient
from session_counters import SessionCounters
from storage import InMemoryStore
from streaming import StreamPump


class FakeProvider(AIProviderClient):
    """
    Scripted stand-in for the Gemini client.

    Fragments are yielded in order; stream_error (if set) is raised after
    them. on_fragment, if set, is called after each yielded fragment, which
    lets a test act while the controller is mid-stream.
    """

    def __init__(self):
        self.fragments: list[StreamFragment] = []
        self.stream_error = None
        self.on_fragment = None
        self.graph = ConceptGraph(
            nodes=[ConceptNode(id="Rome", group=1, val=20), ConceptNode(id="Odoacer", group=2, val=10)],
            links=[ConceptLink(source="Rome", target="Odoacer", value=3)],
        )
        self.graph_error = None
        self.image = b"\xff\xd8\xff\xe0fake-jpeg"
        self.image_error = None
        self.chat_calls = []
        self.graph_calls = []
        self.image_calls = []

    def stream_chat(self, subject, history, text, image=None):
        self.chat_calls.append({"subject": subject, "history": history, "text": text, "image": image})
        for fragment in self.fragments:
            yield fragment
            if self.on_fragment:
                self.on_fragment()
        if self.stream_error:
            raise self.stream_error

    def generate_concept_graph(self, topic):
        self.graph_calls.append(topic)
        if self.graph_error:
            raise self.graph_error
        return self.graph

    def generate_image(self, prompt):
        self.image_calls.append(prompt)
        if self.image_error:
            raise self.image_error
        return self.image


class RecordingSpawner:
    """
    Runs stream producers immediately and holds every other task (concept
    graph requests) until run_pending() is called.
    """

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        if isinstance(getattr(fn, "__self__", None), StreamPump):
            fn(*args)
        else:
            self.pending.append((fn, args))

    def run_pending(self):
        tasks, self.pending = self.pending, []
        for fn, args in tasks:
            fn(*args)


def fragment(text="", *urls):
    return StreamFragment(text=text, grounding_urls=list(urls))


def published_snapshots(events):
    return [payload for name, payload in events if name == STATE_UPDATE]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def credentials(store):
    store.set(API_KEY_KEY, "test-key")
    return CredentialStore(store)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def spawner():
    return RecordingSpawner()


@pytest.fixture
def published():
    return []


@pytest.fixture
def make_controller(provider, store, spawner, published):
    def _make(credentials):
        return ConversationController(
            provider=provider,
            credentials=credentials,
            counters=SessionCounters(store),
            profiles=ProfileStore(store),
            listener=lambda event, payload: published.append((event, payload)),
            spawn=spawner,
            stream_idle_timeout=5,
        )

    return _make


@pytest.fixture
def controller(make_controller, credentials):
    return make_controller(credentials)
