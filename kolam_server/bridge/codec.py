"""
Bridge key codec.

A bridge key is a short token appended to an exported prompt inside an HTML
comment marker, ``<!-- bridge:k3y9 -->``. When the user pastes the AI answer
back, the marker identifies which export the answer belongs to.

Marker grammar (wire contract with the paste source):
    ('<' | '&lt;') '!--' ws* 'bridge' ws* ':' ws* KEY ws* '--' ('>' | '&gt;')
    KEY = [A-Za-z0-9]+

The entity forms are accepted because rich-text editors may HTML-escape the
angle brackets on the way through.

Invariants:
    - generate() returns 4 characters from [a-z0-9], uniformly
    - Keys are not checked for uniqueness; collisions are tolerated
    - extract() returns the first marker's key, lower-cased
"""

from __future__ import annotations

import re
import secrets

KEY_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
KEY_LENGTH = 4

BRIDGE_MARKER_PATTERN = re.compile(
    r"(?:<|&lt;)!--\s*bridge\s*:\s*([a-zA-Z0-9]+)\s*--(?:>|&gt;)",
    re.IGNORECASE,
)


class BridgeKeyCodec:
    """Generate bridge keys and recognise them in pasted text."""

    pattern = BRIDGE_MARKER_PATTERN

    def generate(self) -> str:
        """New 4-character lowercase alphanumeric key."""
        return "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_LENGTH))

    def extract(self, text: str) -> str | None:
        """Key of the first bridge marker in ``text``, lower-cased, or None."""
        match = self.pattern.search(text)
        if match is None:
            return None
        return match.group(1).lower()

    def validate(self, text: str, expected_key: str) -> bool:
        """True iff the first marker in ``text`` carries ``expected_key``."""
        found = self.extract(text)
        return found is not None and found == expected_key.lower()

    def marker(self, key: str) -> str:
        """Render the marker appended to exported prompts."""
        return f"<!-- bridge:{key} -->"

    def strip(self, text: str) -> str:
        """Remove the first bridge marker from ``text``."""
        return self.pattern.sub("", text, count=1)


default_codec = BridgeKeyCodec()
