import os

# Model selection policy: "fast" for most subjects, "reasoning" for Math and Literature
FAST_MODEL_NAME = "gemini-2.5-flash"
REASONING_MODEL_NAME = "gemini-3-pro-preview"
CONCEPT_MAP_MODEL_NAME = "gemini-2.5-flash"
IMAGE_MODEL_NAME = "imagen-4.0-generate-001"

CONCEPT_GRAPH_MIN_CHARS = 200
CONCEPT_GRAPH_TOPIC_CHARS = 50

# Seconds the stream consumer waits for the next fragment before giving up on the turn.
STREAM_IDLE_TIMEOUT_SECONDS = float(os.environ.get("LUMINA_STREAM_IDLE_TIMEOUT", "120"))
REQUEST_TIMEOUT_SECONDS = 600
SIDE_EFFECT_POLL_SECONDS = 0.5

DEBUG_MODE = False

SAFETY_SETTINGS = {
    "HARM_CATEGORY_HARASSMENT": "BLOCK_MEDIUM_AND_ABOVE",
    "HARM_CATEGORY_HATE_SPEECH": "BLOCK_MEDIUM_AND_ABOVE",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_LOW_AND_ABOVE",
    "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_MEDIUM_AND_ABOVE",
}

# Local key-value storage standing in for browser storage
STORAGE_PATH = os.path.join(os.path.dirname(__file__), ".sandbox", "lumina_storage.json")
PROFILE_KEY = "lumina_user"
SESSIONS_KEY = "lumina_sessions"
API_KEY_KEY = "lumina_api_key"

# Deployment-provided credential sources, checked in this order
DEPLOYMENT_API_KEY_ENV = "API_KEY"
DEPLOYMENT_API_KEY_PATH = os.path.join(os.path.dirname(__file__), "private_data", "Gemini_API_Key.txt")

GREETING_TEXT = "Hi! I'm Lumina. Choose a subject and let's start learning!"
STREAM_APOLOGY_TEXT = "I'm sorry, I encountered an error. Please check your connection or API key."
IMAGE_APOLOGY_TEXT = "Sorry, I couldn't generate that image. Please try a different description."
IMAGE_REPLY_TEXT = "Here is the image you requested:"
IMAGE_PROMPT_PREFIX = "Generate image: "

AVATAR_URL_TEMPLATE = "https://api.dicebear.com/7.x/initials/svg?seed={seed}&backgroundColor=6366f1"
AVATAR_MAX_SIZE = 200
AVATAR_JPEG_QUALITY = 80

# Server configuration
SERVER_PORT = 5001
