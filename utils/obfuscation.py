# utils/obfuscation.py
"""Reversible base64 masking for text stored at rest.

This is a storage format, not encryption: anyone holding the database can
read the values back with :func:`reveal`.
"""
import base64
import binascii
import json


def obfuscate(text):
    if text is None:
        return None
    return base64.b64encode(str(text).encode('utf-8')).decode('ascii')


def reveal(text):
    """Decode a value written by :func:`obfuscate`.

    Rows written before masking was introduced hold plain text; anything that
    does not decode cleanly is returned unchanged.
    """
    if text is None:
        return None
    try:
        return base64.b64decode(text.encode('ascii'), validate=True).decode('utf-8')
    except (binascii.Error, UnicodeError, ValueError):
        return text


def obfuscate_json(obj):
    if obj is None:
        return None
    return obfuscate(json.dumps(obj))


def reveal_json(text):
    if text is None:
        return None
    try:
        return json.loads(reveal(text))
    except ValueError:
        return None
