"""Line decoder — turns a byte stream into complete text lines.

Bytes arrive in arbitrarily sized chunks.  The decoder keeps an
incremental codec so multi-byte characters split across chunks are
decoded exactly once, and buffers any partial trailing line until the
next ``write()`` or the final ``end()``.

``\\n``, ``\\r\\n`` and a lone ``\\r`` all terminate a line.  A ``\\r`` at
the very end of a chunk is held back until the next chunk shows whether
it begins a ``\\r\\n`` pair.
"""

from __future__ import annotations

import codecs

DEFAULT_ENCODING = "utf-8"


class LineDecoder:
    """Incremental bytes → lines decoder.

    Usage::

        decoder = LineDecoder()
        for chunk in chunks:
            for line in decoder.write(chunk):
                handle(line)
        tail = decoder.end()
        if tail:
            handle(tail)
    """

    __slots__ = ("_encoding", "_decoder", "_remaining")

    def __init__(self, encoding: str = DEFAULT_ENCODING) -> None:
        # LookupError for unknown encodings surfaces here, at construction.
        self._encoding = codecs.lookup(encoding).name
        self._decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        self._remaining = ""

    @property
    def encoding(self) -> str:
        return self._encoding

    def write(self, chunk: bytes) -> list[str]:
        """Decode *chunk* and return every line it completes, in order."""
        text = self._remaining + self._decoder.decode(chunk)
        lines: list[str] = []
        start = 0
        i = 0
        n = len(text)
        while i < n:
            ch = text[i]
            if ch == "\n":
                lines.append(text[start:i])
                start = i + 1
            elif ch == "\r":
                if i + 1 == n:
                    # Undecided: may be the first half of "\r\n".
                    break
                lines.append(text[start:i])
                if text[i + 1] == "\n":
                    i += 1
                start = i + 1
            i += 1
        self._remaining = text[start:]
        return lines

    def end(self) -> str:
        """Flush the codec and return the pending partial line.

        Returns ``""`` when nothing is pending.  The buffer is reset, so
        the decoder can be reused for a new stream.
        """
        text = self._remaining + self._decoder.decode(b"", final=True)
        self._decoder.reset()
        self._remaining = ""
        if text.endswith("\r"):
            text = text[:-1]
        return text


__all__ = ["DEFAULT_ENCODING", "LineDecoder"]
