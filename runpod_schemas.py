"""
Input validation schema for the RunPod album archive handler.
"""


def _validate_album_id(album_id) -> bool:
    """
    Validate that albumId is a non-blank string.

    The RunPod validator calls constraints even when the type check has
    already failed, so non-strings are rejected here as well.

    Args:
        album_id: Opaque album identifier from the request.

    Returns:
        True if validation passes.
    """
    return isinstance(album_id, str) and bool(album_id.strip())


INPUT_SCHEMA = {
    "albumId": {
        "type": str,
        "required": True,
        "constraints": _validate_album_id,
    },
}
