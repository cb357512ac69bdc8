"""
Utility functions for the application
"""


def normalize_hashtag(tag: str) -> str:
    """
    Normalize a hashtag for consistent comparison and cache keys

    Args:
        tag: Hashtag text, with or without the leading '#'

    Returns:
        Normalized hashtag (lowercase, no '#', surrounding whitespace removed)
    """
    return tag.strip().lstrip('#').lower()


def display_key(value) -> str:
    """Key used for an entity in result maps (screen name for users)"""
    screen_name = getattr(value, 'screen_name', None)
    if screen_name:
        return screen_name
    return str(value)
