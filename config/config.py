"""
Configuration file for Document Conversion Platform
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).parent.parent.absolute()

# Directory watched for incoming documents (files are never moved or deleted)
INPUT_DIR = os.getenv("INPUT_DIR", str(BASE_DIR / "data" / "input"))

# Only files whose name ends with this suffix are ingested
INPUT_SUFFIX = os.getenv("INPUT_SUFFIX", ".docx")

# Directory receiving converted documents
OUTPUT_DIR = os.getenv("OUTPUT_DIR", str(BASE_DIR / "data" / "output"))

# Extension of converted documents (without the dot)
TARGET_EXTENSION = os.getenv("TARGET_EXTENSION", "pdf")

# Scratch directory for payloads materialized during conversion.
# Created at startup and removed recursively at shutdown.
SCRATCH_DIR = os.getenv("SCRATCH_DIR", str(Path(OUTPUT_DIR) / "temp"))

# File backing the process-local idempotent filter of the ingestion router
LOCAL_FILTER_PATH = os.getenv("LOCAL_FILTER_PATH", str(BASE_DIR / "data" / "idempotent" / "idempotent_repo"))

# Redis connection settings
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))

# Redis queue carrying work items from the router to the dispatcher
WORK_QUEUE = os.getenv("WORK_QUEUE", "fileQueue")

# Idempotency keys are KEY_PREFIX + namespace + ":" + filename
KEY_PREFIX = os.getenv("KEY_PREFIX", "docx-pdf-idempotent:")
READ_NAMESPACE = os.getenv("READ_NAMESPACE", "read")
PROCESSED_NAMESPACE = os.getenv("PROCESSED_NAMESPACE", "processed")

# Records expire after this many seconds (5 days); the file is then eligible again
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", str(5 * 24 * 60 * 60)))

# Converter settings
CONVERTER_BACKEND = os.getenv("CONVERTER_BACKEND", "libreoffice")  # or 'docling'
SOFFICE_BINARY = os.getenv("SOFFICE_BINARY", "soffice")

# Logging settings
LOG_DIR = os.getenv("LOG_DIR", str(BASE_DIR / "logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def ensure_directories():
    """Create necessary directories if they don't exist"""
    directories = [
        INPUT_DIR,
        OUTPUT_DIR,
        str(Path(LOCAL_FILTER_PATH).parent),
        LOG_DIR
    ]

    for directory in directories:
        os.makedirs(directory, exist_ok=True)

    print(f"✓ All required directories created/verified")


if __name__ == "__main__":
    # When run directly, create all directories and show configuration
    ensure_directories()

    print("\n" + "="*60)
    print("Document Conversion Platform Configuration")
    print("="*60)
    print(f"Base Directory: {BASE_DIR}")
    print(f"Input Dir: {INPUT_DIR} (*{INPUT_SUFFIX})")
    print(f"Output Dir: {OUTPUT_DIR} (*.{TARGET_EXTENSION})")
    print(f"Scratch Dir: {SCRATCH_DIR}")
    print(f"Log Dir: {LOG_DIR}")
    print(f"Redis Host: {REDIS_HOST}:{REDIS_PORT} db={REDIS_DB}")
    print(f"Work Queue: {WORK_QUEUE}")
    print(f"Key Prefix: {KEY_PREFIX} (ttl={IDEMPOTENCY_TTL_SECONDS}s)")
    print(f"Converter: {CONVERTER_BACKEND}")
    print("="*60)
