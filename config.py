import os
from dotenv import load_dotenv

load_dotenv()

AVAILABLE_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3.1-pro-preview",
    "gemini-2.0-flash",
]

IMAGE_MODELS = [
    "gemini-3.1-flash-image-preview",
    "gemini-2.5-flash-image",
]

THINKING_MODELS = {
    "gemini-3.1-pro-preview",
    "gemini-3-pro-preview",
    "gemini-3-flash-preview",
    "gemini-2.5-pro",
    "gemini-2.5-flash",
}


# Sessions signed with this key can be forged; set SECRET_KEY in production.
DEFAULT_SECRET_KEY = "dev-secret-change-me"


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", DEFAULT_SECRET_KEY)

    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
    TEXT_MODEL = os.environ.get("TEXT_MODEL", AVAILABLE_MODELS[0])
    IMAGE_MODEL = os.environ.get("IMAGE_MODEL", IMAGE_MODELS[0])
    GEMINI_TIMEOUT_MS = int(os.environ.get("GEMINI_TIMEOUT_MS", "300000"))

    # Unset DATABASE_URL keeps everything in a local JSON file.
    DATABASE_URL = os.environ.get("DATABASE_URL")
    STORAGE_PATH = os.environ.get("STORAGE_PATH", os.path.join("data", "store.json"))

    DAILY_FREE_CREDITS = int(os.environ.get("DAILY_FREE_CREDITS", "3"))
    GUEST_LIMIT = int(os.environ.get("GUEST_LIMIT", "2"))
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL")
    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")

    MAX_IMAGE_SIDE = int(os.environ.get("MAX_IMAGE_SIDE", "1024"))
    GENERATION_RETRIES = int(os.environ.get("GENERATION_RETRIES", "2"))
    REPAIR_DELAY_SECONDS = float(os.environ.get("REPAIR_DELAY_SECONDS", "1.0"))

    # name -> (credits, cost in USD)
    CREDIT_PACKS = {
        "starter": (10, 4.99),
        "builder": (50, 19.99),
        "studio": (150, 49.99),
    }
