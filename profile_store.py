"""
Persists the learner profile and builds avatars for it.

A profile without a custom picture gets an initials identicon whose URL is
derived from the name alone, so the same name always yields the same avatar.
Uploaded pictures are shrunk and re-encoded as a JPEG data URI to keep the
stored profile small.
"""
import base64
import io
import json
import logging
from typing import Optional
from urllib.parse import quote

from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from config import AVATAR_JPEG_QUALITY, AVATAR_MAX_SIZE, AVATAR_URL_TEMPLATE, PROFILE_KEY
from data_models import UserProfile
from storage import KeyValueStore

_IDENTICON_PREFIX = AVATAR_URL_TEMPLATE.split("{seed}", 1)[0]


def default_avatar(name: str) -> str:
    return AVATAR_URL_TEMPLATE.format(seed=quote(name.strip(), safe=""))


def is_custom_avatar(avatar: str) -> bool:
    return bool(avatar) and not avatar.startswith(_IDENTICON_PREFIX)


def avatar_from_upload(image_bytes: bytes) -> str:
    """
    Converts an uploaded picture into a compact avatar.

    The image is scaled so that its longer side is at most AVATAR_MAX_SIZE
    pixels (never enlarged) and re-encoded as JPEG.

    Returns:
        A 'data:image/jpeg;base64,...' URI.

    Raises:
        ValueError: If the bytes are not a readable image.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Uploaded avatar is not a readable image: {e}") from e

    width, height = image.size
    longest = max(width, height)
    if longest > AVATAR_MAX_SIZE:
        scale = AVATAR_MAX_SIZE / longest
        image = image.resize((max(1, round(width * scale)), max(1, round(height * scale))))

    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=AVATAR_JPEG_QUALITY)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def build_profile(name: str, avatar: Optional[str] = None) -> UserProfile:
    """Creates a profile. Anything but a custom picture becomes the identicon for this name."""
    if not is_custom_avatar(avatar or ""):
        avatar = default_avatar(name)
    return UserProfile(name=name, avatar=avatar)


class ProfileStore:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> Optional[UserProfile]:
        raw = self.store.get(PROFILE_KEY)
        if not raw:
            return None
        try:
            return UserProfile.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logging.error(f"Stored profile could not be read and will be ignored: {e}")
            return None

    def save(self, profile: UserProfile) -> UserProfile:
        """
        Writes the whole profile and returns what was stored.

        A PersistenceError from the store propagates to the caller.
        """
        if not is_custom_avatar(profile.avatar):
            profile = profile.model_copy(update={"avatar": default_avatar(profile.name)})
        self.store.set(PROFILE_KEY, profile.model_dump_json())
        logging.info(f"Profile saved for '{profile.name}'.")
        return profile

    def clear(self) -> None:
        self.store.remove(PROFILE_KEY)
