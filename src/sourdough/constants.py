"""Shared constants for the bake logger."""

# --- Bake files ---
BAKE_FILE_PREFIX = "bake_"
BAKE_FILE_SUFFIX = ".jsonl"
TRASH_DIR_NAME = "trash"
IMAGES_DIR_NAME = "images"

DATE_FORMAT = "%Y-%m-%d"
NEW_BAKE_KEY_FORMAT = "%Y-%m-%d_%H-%M-%S"

# --- Readings ---
MIN_TEMP_F = -40.0
MAX_TEMP_F = 700.0
MIN_RATING = 1
MAX_RATING = 10

# --- Collaborators ---
DEFAULT_PORT = 8080
DEFAULT_DATA_DIR = "./data"
DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_SENSOR_TIMEOUT_SECONDS = 5.0
DEFAULT_AUTO_LOG_HOURS = 4.0
DEFAULT_HISTORY_LIMIT = 10

IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
}
DEFAULT_IMAGE_EXTENSION = ".jpg"
