"""
Line filtering policy for grep mode: keep a line when it is identified as the
target language, or, with tolerance enabled, when the target's per-byte score
is close enough to the winner's.
"""
from __future__ import annotations

from typing import BinaryIO, Optional

import numpy as np
from rich.console import Console

from langid_engine.config.settings import FilterConfig
from langid_engine.models.inference import identify_with_margin, normalize
from langid_engine.models.model import LanguageModel


def detokenize(text: bytes, marker: bytes) -> bytes:
    """
    Remove ``marker`` tokens, joining the words on either side.

    One space before and one space after each marker are dropped with it, so
    ``b"foo __LW_AT__ bar"`` becomes ``b"foobar"``.
    """
    if not marker:
        return text
    out = bytearray()
    pos = 0
    while True:
        hit = text.find(marker, pos)
        if hit < 0:
            out += text[pos:]
            return bytes(out)
        out += text[pos:hit]
        if hit > 0 and text[hit - 1 : hit] == b" " and out.endswith(b" "):
            del out[-1]
        pos = hit + len(marker)
        if text[pos : pos + 1] == b" ":
            pos += 1


class LineFilter:
    """
    Decide, line by line, whether text is likely enough to be a language.

    Keeps one log-probability buffer for the whole run and counts rejected
    lines for the progress report on stderr.
    """

    def __init__(
        self,
        model: LanguageModel,
        tolerate: bool = False,
        min_logprob: float = FilterConfig.min_logprob,
        detok_marker: Optional[bytes] = None,
        reject: Optional[BinaryIO] = None,
        verbose: int = 0,
        console: Optional[Console] = None,
    ):
        self.model = model
        self.tolerate = tolerate
        self.min_logprob = min_logprob
        self.detok_marker = detok_marker
        self.reject = reject
        self.verbose = verbose
        self.console = console or Console(stderr=True)
        self.logprobs = np.empty(model.num_langs, dtype=np.float64)
        self.total = 0
        self.filtered = 0

    def next_line(self) -> None:
        self.total += 1

    def per_byte_logprob(self, line: bytes, lang_index: int) -> float:
        """Target score relative to the winner, divided by the raw line length."""
        normalize(self.logprobs)
        value = float(self.logprobs[lang_index])
        return value / len(line) if line else value

    def likely_enough(self, line: bytes, lang: Optional[str], lang_index: Optional[int]) -> bool:
        if lang_index is None:
            return True
        text = detokenize(line, self.detok_marker) if self.detok_marker else line
        likely = identify_with_margin(self.model, text, out=self.logprobs)
        per_byte = self.per_byte_logprob(line, lang_index)
        enough = bool(line) and (
            likely.index == lang_index
            or (self.tolerate and per_byte >= self.min_logprob)
        )
        if enough:
            if self.verbose >= 1:
                self._report(f"{self.total} {likely.lang} {lang}={per_byte:.2f} (/{len(line)})")
            return True

        self.filtered += 1
        share = 100.0 * self.filtered / max(self.total, 1)
        self._report(f"{self.total} {lang}={per_byte:.2f} ({share:.4f}%)")
        if self.reject is not None:
            self.reject.write(f"{likely.lang}!={lang} {per_byte:f} ".encode("utf-8") + text)
        return False

    def _report(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False)


__all__ = ["detokenize", "LineFilter"]
