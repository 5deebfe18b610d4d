import base64
import io
import json

import pytest
from PIL import Image

from config import API_KEY_KEY, PROFILE_KEY, SESSIONS_KEY
from credential_store import CredentialStore, load_deployment_key
from data_models import Subject, UserProfile
from errors import CredentialMissing, PersistenceError
from profile_store import ProfileStore, avatar_from_upload, build_profile, default_avatar, is_custom_avatar
from session_counters import SessionCounters
from storage import InMemoryStore, JsonFileStore


# --- Key-value stores ---


def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "nested" / "storage.json"
    store = JsonFileStore(str(path))

    store.set("a", "1")
    store.set("b", "2")
    store.remove("a")
    store.remove("missing")

    assert store.get("a") is None
    assert store.get("b") == "2"
    assert json.loads(path.read_text()) == {"b": "2"}
    # A second instance sees what the first one wrote.
    assert JsonFileStore(str(path)).get("b") == "2"


def test_json_file_store_never_overwrites_corrupt_file(tmp_path):
    path = tmp_path / "storage.json"
    damaged = '{"lumina_user": "{\\"name\\": \\"Ada\\"}", "lumina_api_key": "user-key"'
    path.write_text(damaged)
    store = JsonFileStore(str(path))

    assert store.get("lumina_user") is None
    with pytest.raises(PersistenceError):
        store.set("lumina_sessions", "{}")
    with pytest.raises(PersistenceError):
        store.remove("lumina_user")
    with pytest.raises(PersistenceError):
        store.update("lumina_sessions", lambda raw: "{}")

    assert path.read_text() == damaged


def test_json_file_store_update_reads_latest_value(tmp_path):
    path = str(tmp_path / "storage.json")
    JsonFileStore(path).set("n", "1")

    result = JsonFileStore(path).update("n", lambda raw: str(int(raw) + 1))

    assert result == "2"
    assert JsonFileStore(path).get("n") == "2"


def test_json_file_store_write_failure_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    store = JsonFileStore(str(blocker / "storage.json"))

    with pytest.raises(PersistenceError):
        store.set("key", "value")


# --- Credentials ---


def test_deployment_key_wins_over_user_key():
    store = InMemoryStore({API_KEY_KEY: "user-key"})
    credentials = CredentialStore(store, deployment_key="deploy-key")

    assert credentials.current_credential() == "deploy-key"
    credentials.set_user_credential("another-key")
    assert credentials.current_credential() == "deploy-key"
    assert store.get(API_KEY_KEY) == "another-key"


def test_blank_user_key_is_ignored():
    store = InMemoryStore()
    credentials = CredentialStore(store)

    credentials.set_user_credential("   ")

    assert store.values == {}
    assert credentials.has_access() is False


def test_require_reloads_a_key_stored_elsewhere():
    store = InMemoryStore()
    credentials = CredentialStore(store)
    with pytest.raises(CredentialMissing):
        credentials.require()

    store.set(API_KEY_KEY, "written-by-another-session")

    assert credentials.require() == "written-by-another-session"


def test_load_deployment_key_prefers_environment(tmp_path, monkeypatch):
    key_file = tmp_path / "key.txt"
    key_file.write_text("file-key\n")

    monkeypatch.setenv("LUMINA_TEST_KEY", " env-key ")
    assert load_deployment_key("LUMINA_TEST_KEY", str(key_file)) == "env-key"

    monkeypatch.delenv("LUMINA_TEST_KEY")
    assert load_deployment_key("LUMINA_TEST_KEY", str(key_file)) == "file-key"
    assert load_deployment_key("LUMINA_TEST_KEY", str(tmp_path / "absent.txt")) is None


# --- Session counters ---


def test_counters_persist_every_increment():
    store = InMemoryStore()
    counters = SessionCounters(store)

    counters.increment(Subject.MATH)
    counters.increment(Subject.MATH)

    saved = json.loads(store.get(SESSIONS_KEY))
    assert saved["Mathematics"] == 2
    assert saved["General Helper"] == 0


def test_counters_from_two_sessions_add_up():
    store = InMemoryStore()
    first, second = SessionCounters(store), SessionCounters(store)
    first.load()
    second.load()

    first.increment(Subject.HISTORY)
    second.increment(Subject.MATH)
    second.increment(Subject.HISTORY)

    fresh = SessionCounters(store)
    fresh.load()
    assert fresh.get(Subject.HISTORY) == 2
    assert fresh.get(Subject.MATH) == 1
    assert fresh.total() == 3


def test_counter_survives_unwritable_storage(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{broken")
    counters = SessionCounters(JsonFileStore(str(path)))

    with pytest.raises(PersistenceError):
        counters.increment(Subject.SCIENCE)

    assert counters.get(Subject.SCIENCE) == 1
    assert path.read_text() == "{broken"


def test_counters_load_skips_unknown_entries():
    store = InMemoryStore({SESSIONS_KEY: json.dumps({"Mathematics": 3, "Astrology": 9, "HISTORY": "2", "Science & Nature": "x"})})
    counters = SessionCounters(store)

    counters.load()

    assert counters.get(Subject.MATH) == 3
    assert counters.get(Subject.HISTORY) == 2
    assert counters.get(Subject.SCIENCE) == 0
    assert counters.total() == 5


def test_progress_caps_scores_and_levels_by_ten():
    counters = SessionCounters(InMemoryStore())
    counters.counts[Subject.SCIENCE] = 25
    counters.counts[Subject.MATH] = 3

    report = counters.progress()

    scores = {entry.subject: entry.score for entry in report.entries}
    assert scores[Subject.SCIENCE] == 100
    assert scores[Subject.MATH] == 15
    assert report.total_sessions == 28
    assert report.level == 3


# --- Profiles ---


def test_default_avatar_is_derived_from_the_name():
    assert default_avatar("Ada Lovelace") == default_avatar("Ada Lovelace")
    assert "seed=Ada%20Lovelace" in default_avatar("Ada Lovelace")
    assert is_custom_avatar(default_avatar("Ada")) is False
    assert is_custom_avatar("data:image/jpeg;base64,AAAA") is True
    assert is_custom_avatar("") is False


def test_profile_store_save_load_clear():
    store = InMemoryStore()
    profiles = ProfileStore(store)

    saved = profiles.save(UserProfile(name="Grace"))

    assert saved.avatar == default_avatar("Grace")
    assert profiles.load() == saved
    profiles.clear()
    assert profiles.load() is None
    assert PROFILE_KEY not in store.values


def test_profile_store_ignores_invalid_data():
    profiles = ProfileStore(InMemoryStore({PROFILE_KEY: json.dumps({"name": "  "})}))
    assert profiles.load() is None


def test_renamed_profile_gets_a_new_identicon():
    renamed = build_profile("Bob", default_avatar("Alice"))

    assert renamed.avatar == default_avatar("Bob")


def test_custom_avatar_survives_rename():
    picture = "data:image/jpeg;base64,AAAA"

    assert build_profile("Bob", picture).avatar == picture


def test_profile_store_rekeys_identicon_on_save():
    profiles = ProfileStore(InMemoryStore())

    saved = profiles.save(UserProfile(name="Bob", avatar=default_avatar("Alice")))

    assert saved.avatar == default_avatar("Bob")


def test_build_profile_rejects_blank_name():
    with pytest.raises(ValueError):
        build_profile("   ")


def test_avatar_upload_is_shrunk_to_jpeg():
    buffer = io.BytesIO()
    Image.new("RGBA", (400, 100), (255, 0, 0, 128)).save(buffer, format="PNG")

    avatar = avatar_from_upload(buffer.getvalue())

    assert avatar.startswith("data:image/jpeg;base64,")
    decoded = Image.open(io.BytesIO(base64.b64decode(avatar.split(",", 1)[1])))
    assert decoded.format == "JPEG"
    assert decoded.size == (200, 50)


def test_avatar_upload_rejects_non_images():
    with pytest.raises(ValueError):
        avatar_from_upload(b"definitely not an image")
