"""
Application Configuration

Loads configuration from environment variables with sensible defaults.
All hardcoded paths, service URLs and settings should be defined here.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists (override=True means .env takes precedence over system env vars)
load_dotenv(override=True)

# =============================================================================
# BASE PATHS
# =============================================================================

# Base directory (where this config file is located)
BASE_DIR = Path(__file__).resolve().parent

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./anevia.db")

# =============================================================================
# APPLICATION SETTINGS
# =============================================================================

DEBUG = os.getenv("DEBUG", "True").lower() in ("true", "1", "yes")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))

# =============================================================================
# FILE STORAGE
# =============================================================================

IMAGES_DIR = Path(os.getenv("IMAGES_DIR", str(BASE_DIR / "images")))

# Original eye photos, cropped conjunctiva photos and profile photos
SCANS_DIR = IMAGES_DIR / "scans"
CONJUNCTIVAS_DIR = IMAGES_DIR / "conjunctivas"
PROFILES_DIR = IMAGES_DIR / "profiles"

# Maximum file upload size (in bytes) - default 10MB
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))

# =============================================================================
# INFERENCE SERVICES
# =============================================================================

# Conjunctiva cropping service (returns the cropped image bytes)
CROP_SERVICE_URL = os.getenv("CROP_SERVICE_URL", "http://localhost:8000/crop")

# Anemia classification service (returns detection + confidence JSON)
CLASSIFY_SERVICE_URL = os.getenv("CLASSIFY_SERVICE_URL", "http://localhost:8000/predict")

INFERENCE_TIMEOUT_SECONDS = float(os.getenv("INFERENCE_TIMEOUT_SECONDS", "30"))

# =============================================================================
# CONVERSATIONAL AI (GEMINI)
# =============================================================================

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-pro")
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "1024"))

# Lifetime of cached per-session conversation handles (0 disables expiry)
CHAT_HANDLE_TTL_SECONDS = int(os.getenv("CHAT_HANDLE_TTL_SECONDS", "3600"))

# =============================================================================
# IDENTITY PROVIDER (FIREBASE)
# =============================================================================

FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL", "")
# Private keys in .env files usually carry escaped newlines
FIREBASE_PRIVATE_KEY = os.getenv("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")

# HTTP timeout for every call firebase-admin makes to the identity provider
IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "10"))

# =============================================================================
# CORS SETTINGS
# =============================================================================

# Comma-separated list of allowed origins, or "*" for all
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
CORS_ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "True").lower() in ("true", "1", "yes")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR / "logs" / "app.json.log"))


# =============================================================================
# HELPER FUNCTION
# =============================================================================

def get_config_summary():
    """Returns a summary of current configuration (for debugging)."""
    return {
        "database_url": DATABASE_URL[:20] + "..." if len(DATABASE_URL) > 20 else DATABASE_URL,
        "debug": DEBUG,
        "host": HOST,
        "port": PORT,
        "images_dir": str(IMAGES_DIR),
        "crop_service_url": CROP_SERVICE_URL,
        "classify_service_url": CLASSIFY_SERVICE_URL,
        "inference_timeout_seconds": INFERENCE_TIMEOUT_SECONDS,
        "gemini_model": GEMINI_MODEL,
        "gemini_configured": bool(GEMINI_API_KEY),
        "firebase_configured": bool(FIREBASE_PROJECT_ID and FIREBASE_CLIENT_EMAIL),
        "identity_timeout_seconds": IDENTITY_TIMEOUT_SECONDS,
    }
