from typing import Dict

from lifecycled.utils.diagnostics import TagValidationError

MAX_TAGS = 50
MAX_KEY_LENGTH = 128
MAX_VALUE_LENGTH = 256
RESERVED_PREFIX = "aws:"


def parse_tags(tag_string: str) -> Dict[str, str]:
    """
    Parse ``key=value,key2=value2`` into a tag mapping for queue creation.

    Keys and values are trimmed, values may contain ``=``, pairs without a key
    or without ``=`` are ignored and the last occurrence of a duplicate key
    wins. Raises TagValidationError when a key or value is too long, a key uses
    the reserved ``aws:`` prefix, or more than 50 tags remain.
    """
    tags: Dict[str, str] = {}
    if not tag_string:
        return tags

    for pair in tag_string.split(","):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue

        key, value = pair.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(key) > MAX_KEY_LENGTH:
            raise TagValidationError(f"tag key exceeds {MAX_KEY_LENGTH} characters: {key[:32]}...")
        if len(value) > MAX_VALUE_LENGTH:
            raise TagValidationError(f"tag value for '{key}' exceeds {MAX_VALUE_LENGTH} characters")
        if key.lower().startswith(RESERVED_PREFIX):
            raise TagValidationError(f"tag key '{key}' uses the reserved '{RESERVED_PREFIX}' prefix")

        tags[key] = value

    if len(tags) > MAX_TAGS:
        raise TagValidationError(f"too many tags: {len(tags)} (maximum is {MAX_TAGS})")

    return tags
