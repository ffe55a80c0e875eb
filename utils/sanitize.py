import nh3

BLOCKED_WORDS = ("spam", "junk", "badword")


def clean(text):
    """Strip every HTML tag from user supplied text."""
    if text is None:
        return None
    return nh3.clean(str(text), tags=set()).strip()


def contains_profanity(text):
    lowered = (text or "").lower()
    return any(word in lowered for word in BLOCKED_WORDS)
