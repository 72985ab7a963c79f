"""Sensitive-field masking for audit payloads.

Field detection is data, not code: a list of regular expressions matched
case-insensitively against key names at every depth. Short tokens such as
"rg" are anchored on underscore boundaries so they do not match inside
unrelated words ("cargo", "orgao").

Masking keeps at most MASK_MAX_VISIBLE characters at each end of a string
and replaces the interior with a fixed-length mask, so the mask does not
leak the value's length. Non-string values are replaced outright.
"""
import copy
import re
from typing import Iterable

from ..core.constants import (
    MASK_CHAR,
    MASK_LENGTH,
    MASK_MAX_VISIBLE,
    REDACTION_MARKER,
    SHORT_VALUE_MASK,
)

DEFAULT_SENSITIVE_FIELDS = [
    r"senha",
    r"password",
    r"passwd",
    r"token",
    r"secret",
    r"credit_?card",
    r"cartao",
    r"card_?number",
    r"cvv",
    r"cpf",
    r"cnpj",
    r"(^|_)rg($|_)",
    r"passaporte",
    r"passport",
    r"biometria",
    r"biometric",
    r"fingerprint",
]


def mask_value(
    value: str,
    mask_char: str = MASK_CHAR,
    mask_length: int = MASK_LENGTH,
    max_visible: int = MASK_MAX_VISIBLE,
) -> str:
    """Mask a sensitive string, keeping only boundary characters.

    Strings of length 4 or less are fully masked. Longer strings keep
    min(max_visible, len // 4) characters at each end.
    """
    if not value:
        return REDACTION_MARKER
    if len(value) <= 4:
        return SHORT_VALUE_MASK

    visible = min(max_visible, len(value) // 4)
    return value[:visible] + mask_char * mask_length + value[len(value) - visible:]


class Sanitizer:
    """Recursive masker for audit payloads.

    Args:
        patterns: Regular expressions identifying sensitive key names
        mask_length: Fixed length of the interior mask
    """

    def __init__(
        self,
        patterns: Iterable[str] | None = None,
        mask_length: int = MASK_LENGTH,
    ):
        self.patterns = list(patterns if patterns is not None else DEFAULT_SENSITIVE_FIELDS)
        self.mask_length = mask_length
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def is_sensitive(self, key) -> bool:
        name = str(key)
        return any(p.search(name) for p in self._compiled)

    def _mask(self, value):
        if isinstance(value, str):
            return mask_value(value, mask_length=self.mask_length)
        return REDACTION_MARKER

    def _walk(self, value):
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if self.is_sensitive(key):
                    result[key] = self._mask(item)
                else:
                    result[key] = self._walk(item)
            return result
        if isinstance(value, (list, tuple)):
            return [self._walk(item) for item in value]
        return value

    def sanitize(self, data):
        """Return a sanitized deep copy; the input is never modified."""
        if data is None:
            return {}
        return self._walk(copy.deepcopy(data))
