"""Incremental reader and classifier for command output streams.

Each chunk read from a pipe is decoded with an incremental decoder, so a
multi-byte character split across two reads is held back until it is
complete. Chunks are classified one at a time; prompt detection looks at a
single chunk only, which means a marker split across two reads is missed
and unrelated text containing "password:" is reported as a prompt.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

from homelab_admin.domain.models import OutputEvent, PasswordPromptEvent

logger = logging.getLogger(__name__)

PASSWORD_PROMPT_MARKERS = ("[sudo] password", "password for", "password:")

DEFAULT_CHUNK_SIZE = 4096


def is_password_prompt(text: str) -> bool:
    """Whether a chunk looks like an interactive credential prompt."""
    lower = text.lower()
    return any(marker in lower for marker in PASSWORD_PROMPT_MARKERS)


def classify_chunk(text: str) -> OutputEvent | PasswordPromptEvent:
    """Turn a decoded chunk into the live event observers receive."""
    if is_password_prompt(text):
        return PasswordPromptEvent()
    return OutputEvent(text=text)


class StreamReader:
    """Drains one byte stream and hands decoded text chunks to a callback."""

    def __init__(
        self,
        stream: asyncio.StreamReader,
        on_chunk: Callable[[str], None],
        name: str = "stdout",
        encoding: str = "utf-8",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._stream = stream
        self._on_chunk = on_chunk
        self._name = name
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._chunk_size = chunk_size
        self._bytes_read = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    async def run(self) -> None:
        """Read until EOF, emitting every non-empty decoded chunk in order."""
        try:
            while True:
                data = await self._stream.read(self._chunk_size)
                if not data:
                    break
                self._bytes_read += len(data)
                text = self._decoder.decode(data)
                if text:
                    self._on_chunk(text)
        except OSError as e:
            logger.debug("%s stream closed: %s", self._name, e)

        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._on_chunk(tail)
        logger.debug("%s reader finished after %d bytes", self._name, self._bytes_read)
