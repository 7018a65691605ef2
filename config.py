import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Local storage Configuration
STORAGE_PATH = os.getenv("STORAGE_PATH", "data/ai_drawing.db")

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "false").lower() == "true"
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", "logs/ai_drawing.log")

# FAL Configuration
FAL_KEY = os.getenv("FAL_KEY")
# Shared public credential so the FAL path works without any setup.
# Configure FAL_KEY (or a stored API key) to use a private quota.
FAL_DEFAULT_CREDENTIALS = os.getenv(
    "FAL_DEFAULT_CREDENTIALS",
    "efcd5ad0-f538-4898-9bb5-7b6586071e8a:a656dd5786e8413f1f008f4a0851df20",
)
FAL_OUTPUT_FORMAT = "png"
FAL_DEFAULT_SAFETY_TOLERANCE = "2"

# Source images whose decoded size is above this are uploaded instead of inlined
FILE_SIZE_THRESHOLD = int(
    os.getenv("FILE_SIZE_THRESHOLD", str(int(1.5 * 1024 * 1024)))
)  # bytes

# OpenAI-compatible API Configuration
CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
IMAGE_EDITS_ENDPOINT = "/v1/images/edits"

# HTTP Timeout Configuration
HTTP_CONNECT_TIMEOUT = float(os.getenv("HTTP_CONNECT_TIMEOUT", "15"))  # seconds
IMAGE_EDIT_TIMEOUT = float(os.getenv("IMAGE_EDIT_TIMEOUT", "300"))  # seconds

# Appended to FAL prompts when more than one reference image was supplied
REFERENCE_IMAGES_ANNOTATION = os.getenv(
    "REFERENCE_IMAGES_ANNOTATION",
    "\n\nReference images: {count} reference images were provided. "
    "The first one is the primary reference, the others are additional references.",
)
