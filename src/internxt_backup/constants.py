"""Constants for internxt-backup."""

# State directory and files (inside the per-user state directory)
STATE_DIR_NAME = ".internxt-backup"
BASELINE_FILE = "internxt-backup-baseline.json"
HASH_CACHE_FILE = "internxt-backup-hash-cache.json"
SCANNER_STATE_FILE = "internxt-backup-state.json"
LOCK_FILE = "lock"
UPLOADS_DIR = "internxt-uploads"
RESTORE_TMP_DIR = "internxt-backup-restore"

# Remote manifest written at the backup target root
MANIFEST_FILENAME = ".internxt-backup-meta.json"
MANIFEST_SIGNATURE_ALGORITHM = "hmac-sha256"

# Resumable uploads
RESUMABLE_THRESHOLD = 100 * 1024 * 1024  # 100MB
DEFAULT_CHUNK_SIZE = 50 * 1024 * 1024  # 50MB
MAX_UPLOAD_ATTEMPTS = 3
MAX_RETRY_DELAY_MS = 10_000
STATE_FILE_EXTENSION = ".upload-state.json"

# Permissions
PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700
PERMISSION_BITS = 0o7777

# Environment variables
ENV_STATE_DIR = "INTERNXT_BACKUP_STATE_DIR"
ENV_CONFIG = "INTERNXT_BACKUP_CONFIG"
ENV_MANIFEST_KEY = "INTERNXT_BACKUP_MANIFEST_KEY"
ENV_RETRY_DELAY_MS = "INTERNXT_BACKUP_RETRY_DELAY_MS"
ENV_CLI_BINARY = "INTERNXT_CLI"

# Version
BACKUP_VERSION = "0.1.0"
BASELINE_VERSION = 1
