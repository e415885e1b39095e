"""
Translation of legacy job identifiers into dotted job type names.

Ruby class names (``Mailers::WelcomeEmail``), Python task paths
(``app.tasks.send_email``) and JavaScript job names (``send-email``) all map
onto the same lowercase, dot separated form::

    >>> canonicalize("Mailers::WelcomeEmail")
    'mailers.welcome.email'
    >>> canonicalize("send_email")
    'send.email'

Every uppercase letter after the first character of a segment starts a new
segment, so acronym runs are split letter by letter::

    >>> canonicalize("HTTPServer")
    'h.t.t.p.server'
"""

import re

_SEPARATORS = re.compile(r"::|[._\-\s]+")


def _split_camel(segment: str) -> list[str]:
    parts = []
    current = ""
    for index, char in enumerate(segment):
        if index > 0 and char.isupper():
            parts.append(current)
            current = ""
        current += char
    parts.append(current)
    return parts


def canonicalize(identifier: str) -> str:
    words = []
    for segment in _SEPARATORS.split(identifier):
        words.extend(_split_camel(segment))
    return ".".join(word.lower() for word in words if word)
