"""Global constants for report cards and uploads."""
from urllib.parse import unquote

REQUIRED_REPORT_FIELDS = ("fullName", "phone", "email", "idType", "idDescription")
OPTIONAL_REPORT_FIELDS = ("fileDescription",)

REPORT_FIELD_COLUMNS = {
    "fullName": "full_name",
    "phone": "phone",
    "email": "email",
    "idType": "id_type",
    "idDescription": "id_description",
    "fileDescription": "file_description",
}

STATUS_LOST = "lost"
STATUS_FOUND = "found"
STATUS_RESOLVED = "resolved"
REPORT_STATUSES = (STATUS_LOST, STATUS_FOUND, STATUS_RESOLVED)

REQUIRED_FOUND_CARD_FIELDS = ("title", "cardType")
OPTIONAL_FOUND_CARD_FIELDS = (
    "description",
    "fullName",
    "phoneNumber",
    "email",
    "idNumber",
    "dateFound",
    "locationFound",
    "additionalInfo",
)

FOUND_CARD_FIELD_COLUMNS = {
    "title": "title",
    "cardType": "card_type",
    "description": "description",
    "fullName": "full_name",
    "phoneNumber": "phone_number",
    "email": "email",
    "idNumber": "id_number",
    "dateFound": "date_found",
    "locationFound": "location_found",
    "additionalInfo": "additional_info",
}

FOUND_CARD_ACTIVE = "active"

# Checked in this order; the first claim present is the identity.
IDENTITY_CLAIMS = ("user_id", "sub", "uid")
EMAIL_CLAIM = "email"
EXPIRY_CLAIM = "exp"

BEARER_PREFIX = "Bearer "

ALLOWED_UPLOAD_TYPES = frozenset({"image/jpeg", "image/png", "image/jpg", "application/pdf"})
MAX_UPLOAD_SIZE = 5 * 1024 * 1024
MAX_UPLOAD_SIZE_LIMIT = 50 * 1024 * 1024
UPLOAD_PREFIX = "report-cards"

DEFAULT_STORAGE_WORKERS = 4
DEFAULT_STORAGE_CONCURRENCY = 2

MAX_WEBDAV_RETRY_ATTEMPTS = 3
INITIAL_WEBDAV_BACKOFF = 0.5

MAX_FILENAME_LENGTH = 255

LIST_DEGRADED_WARNING = "Report cards are temporarily unavailable"
FOUND_LIST_DEGRADED_WARNING = "Found cards are temporarily unavailable"
STATS_DEGRADED_WARNING = "Report card statistics are temporarily unavailable"


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent path traversal attacks.

    Decodes URL-encoded characters, keeps only the last path component and
    strips leading dots and slashes. UTF-8 characters and spaces are allowed.
    """
    filename = unquote(filename)

    sanitized = filename.split('/')[-1].split('\\')[-1]

    sanitized = sanitized.lstrip('.' + '/\\')

    if len(sanitized) > MAX_FILENAME_LENGTH:
        raise ValueError(f"Invalid filename: exceeds maximum length of {MAX_FILENAME_LENGTH}")

    # Block only dangerous characters: < > : " | ? * and control characters
    dangerous_chars = set('<>:"|?*') | {chr(c) for c in range(32)}
    sanitized = ''.join(c for c in sanitized if c not in dangerous_chars)

    if not sanitized:
        raise ValueError("Invalid filename: empty after sanitization")

    return sanitized
