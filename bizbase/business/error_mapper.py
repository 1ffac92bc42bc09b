# bizbase/business/error_mapper.py
"""Maps raw driver error text to readable messages."""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{(\d+)\}")


class ErrorMapping(BaseModel):
    """`pattern` selects the entry; the first `mappings` key found in the message fills `${n}`."""

    pattern: str
    description: str
    mappings: Dict[str, str] = {}


class SqlErrorMapper:
    def __init__(self, mappings: Optional[List[Any]] = None, file: Optional[str] = None):
        self.file = file
        self._mappings: Optional[List[ErrorMapping]] = None
        self._patterns: List[re.Pattern] = []
        if mappings is not None:
            self._set_mappings(mappings)

    def _set_mappings(self, entries: List[Any]) -> None:
        self._mappings = [
            entry if isinstance(entry, ErrorMapping) else ErrorMapping.model_validate(entry)
            for entry in entries
        ]
        self._patterns = [re.compile(entry.pattern) for entry in self._mappings]

    def get_mappings(self) -> List[ErrorMapping]:
        if self._mappings is None:
            entries: List[Any] = []
            if self.file and os.path.exists(self.file):
                with open(self.file, "r", encoding="utf-8") as f:
                    entries = json.load(f)
                logger.debug("Loaded %s SQL error mappings from %s", len(entries), self.file)
            elif self.file:
                logger.warning("SQL error mappings file %s not found", self.file)
            self._set_mappings(entries)
        return self._mappings or []

    def map(self, message: str) -> str:
        mappings = self.get_mappings()
        for entry, pattern in zip(mappings, self._patterns):
            if not pattern.search(message):
                continue
            replacement_key = next((key for key in entry.mappings if key in message), None)
            if replacement_key is None:
                return message
            replacement = entry.mappings[replacement_key]
            return _PLACEHOLDER.sub(lambda _: replacement, entry.description)
        return message

    def map_exception(self, exc: BaseException) -> str:
        """Readable message for a driver exception."""
        orig = getattr(exc, "orig", None)
        message = str(orig) if orig is not None else str(exc)
        if not message:
            return "Unknown error"
        return self.map(message)
