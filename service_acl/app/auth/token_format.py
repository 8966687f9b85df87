"""
Credential format check.
"""

import re

from shared.errors import ValidationError


class TokenFormatChecker:
    """Match credentials against the configured pattern before verification."""

    def __init__(self, pattern: str):
        try:
            self._regex = re.compile(pattern)
        except re.error as e:
            raise ValidationError(
                "Invalid token format pattern",
                details={"pattern": pattern, "error": str(e)}
            )

    def is_valid(self, token: str) -> bool:
        return bool(token) and self._regex.fullmatch(token) is not None
