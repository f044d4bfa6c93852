"""
streams.py — lazy row readers for the delimited source tables

Rows are plain lists of strings, one per line, split on a single delimiter.
There is no quoting support: a delimiter inside a quoted field still splits.
"""
from __future__ import annotations

import io
from itertools import zip_longest
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Tuple, Union

Row = List[str]
Source = Union[str, Path, IO[str]]

TAB_SUFFIXES = {".tsv", ".tab"}


def delimiter_for(source: Source, delimiter: Optional[str] = None) -> str:
    if delimiter:
        return delimiter
    if isinstance(source, (str, Path)) and Path(str(source)).suffix.lower() in TAB_SUFFIXES:
        return "\t"
    return ","


def split_line(line: str, delimiter: str) -> Row:
    return line.rstrip("\r\n").split(delimiter)


class DelimitedReader:
    """
    Forward-only row source over a file path, an open handle, or a text blob.

    Each iter() on a path or text blob starts again from the first line; an open
    handle is consumed once. A zero-length line ends the sequence.
    """

    def __init__(self, source: Source, delimiter: Optional[str] = None, *, text: bool = False):
        self.source = source
        self.text = text
        if text:
            self.delimiter = delimiter or ","
        else:
            self.delimiter = delimiter_for(source, delimiter)

    def _lines(self) -> Iterator[str]:
        if self.text:
            yield from io.StringIO(str(self.source))
        elif isinstance(self.source, (str, Path)):
            with open(self.source, "r", encoding="utf-8", newline="") as fh:
                yield from fh
        else:
            yield from self.source

    def __iter__(self) -> Iterator[Row]:
        for line in self._lines():
            stripped = line.rstrip("\r\n")
            if not stripped:
                return
            yield split_line(stripped, self.delimiter)

    def header(self) -> Row:
        return next(iter(self), [])


class PairedRows:
    """
    Lockstep pairing of two row iterators.

    Yields (a, b) until both sides are exhausted; the exhausted side yields None.
    Stops after `limit` pairs and sets `limit_reached` instead of raising.
    """

    def __init__(self, a: Iterable[Row], b: Iterable[Row], *, limit: int = 10_000_000):
        self._a = a
        self._b = b
        self.limit = limit
        self.count = 0
        self.limit_reached = False

    def __iter__(self) -> Iterator[Tuple[Optional[Row], Optional[Row]]]:
        for pair in zip_longest(self._a, self._b, fillvalue=None):
            if self.count >= self.limit:
                self.limit_reached = True
                return
            self.count += 1
            yield pair


def paired_rows(a: Iterable[Row], b: Iterable[Row], *, limit: int = 10_000_000) -> PairedRows:
    return PairedRows(a, b, limit=limit)
