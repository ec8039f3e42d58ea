import logging
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #

UTTERANCE_UUID_LENGTH = 16  # fixed length for utterance ids


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(UTTERANCE_UUID_LENGTH)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_utc() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def parse_id_list(raw: str | None) -> list[int]:
    """
    Parse a comma-separated list of Discord snowflakes.

    Blank entries are skipped; entries that are not integers are logged and skipped.

    Example:
        >>> parse_id_list("123, 456,,")
        [123, 456]
    """
    if not raw:
        return []

    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning(f"Ignoring invalid id in list: {part!r}")
    return ids


def parse_int_env(raw: str | None, default: int, minimum: int = 1) -> int:
    """Parse an integer setting, falling back to ``default`` when missing or invalid."""
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer setting {raw!r}, using default {default}")
        return default
    if value < minimum:
        logger.warning(f"Setting {value} is below minimum {minimum}, using default {default}")
        return default
    return value
