"""
Word scanning and space-separated output helpers.
"""
from __future__ import annotations

from typing import Iterator, List, TextIO

# Whitespace as make splits words: space, tab, newline, vertical tab, form feed, carriage return.
WHITESPACE = " \t\n\v\f\r"


def trim_space(text: str) -> str:
    return text.strip(WHITESPACE)


class WordScanner:
    """Iterates over the whitespace-delimited words of a text."""
    __slots__ = ("_text", "_pos")

    def __init__(self, text: str):
        self._text = text
        self._pos = 0

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        text = self._text
        n = len(text)
        i = self._pos
        while i < n and text[i] in WHITESPACE:
            i += 1
        if i >= n:
            self._pos = n
            raise StopIteration
        j = i
        while j < n and text[j] not in WHITESPACE:
            j += 1
        self._pos = j
        return text[i:j]


def split_words(text: str) -> List[str]:
    return list(WordScanner(text))


class SsvWriter:
    """Writes words to an output separated by single spaces.

    The separator is emitted before every word except the first one this
    writer has seen, so several queries can share one writer.
    """
    def __init__(self, out: TextIO):
        self.out = out
        self.count = 0

    def write_word(self, word: str):
        if self.count:
            self.out.write(" ")
        self.out.write(word)
        self.count += 1

    def write_words(self, words) -> None:
        for word in words:
            self.write_word(word)

    def __repr__(self) -> str:
        return f"<SsvWriter count={self.count}>"


class WordCollector(SsvWriter):
    """An SsvWriter that keeps the words instead of writing them."""
    def __init__(self):
        super().__init__(None)
        self.words: List[str] = []

    def write_word(self, word: str):
        self.words.append(word)
        self.count += 1
