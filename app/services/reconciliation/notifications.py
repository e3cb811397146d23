"""
Clearing-house notification normalisation.
"""

import enum
import json
import re
from typing import Any, Optional

_ERROR_CODE_PATTERN = re.compile(r"Fehler-Code:\s*(\S+)")

# Preferred language order for multilingual notification texts
MESSAGE_LANGUAGES = ("de", "fr", "en", "it")


class NotificationSeverity(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: Any) -> "NotificationSeverity":
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.INFO


def message_text(message: Any) -> Optional[str]:
    if isinstance(message, str):
        return message or None
    if isinstance(message, dict):
        for language in MESSAGE_LANGUAGES:
            if message.get(language):
                return str(message[language])
        return json.dumps(message, ensure_ascii=False) if message else None
    return None


def error_code(explicit: Optional[str], text: Optional[str]) -> Optional[str]:
    if explicit:
        return explicit
    if text:
        found = _ERROR_CODE_PATTERN.search(text)
        if found:
            return found.group(1)
    return None
