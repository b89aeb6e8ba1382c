"""
delimcsv: delimiter-separated text (CSV and CSV-like dialects) to row dicts and back.

Contract:
- A Dialect bundles the parsing/formatting rules:
    delimiter (may be several characters), quote character, doubled-quote
    escaping, trim set, skip-initial-space, header flag, column names,
    ignored columns, skip-empty-rows, line terminator.
- Dialects live in a DialectRegistry owned by each Reader/Writer.
  Presets: "excel" (,), "excel_tab" (\\t), "unix" (,).
- Tokenizing is one left-to-right scan per line:
    a delimiter only separates fields outside an open quoted span;
    with doubled-quote escaping, "" inside a quoted field is one literal ".
  Enclosing quotes are stripped when the field is resolved.
- Every row has exactly as many fields as the header:
  short rows are padded with "", long rows are truncated.
- Rows are plain dicts keyed by header name, minus ignored columns.
- Writing joins values with the delimiter; no quoting or escaping on write.

API:
- reader(source, dialect="excel", ...) -> ParseResult(rows, header, shape)
- Reader().read(source, rows=0) -> ParseResult
- writer(target, dialect="excel", ...) -> Writer
- Writer.write_row_from_sequence(values) / Writer.write_row_from_mapping(mapping)

Python: 3.8+
"""

from __future__ import annotations

import copy
import io
import logging
import os
from dataclasses import dataclass, field
from typing import (
    Any,
    BinaryIO,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    TextIO,
    Tuple,
    Union,
)

logger = logging.getLogger("delimcsv")

Row = Dict[str, str]
Source = Union[str, "os.PathLike[str]", TextIO]
Sink = Union[str, "os.PathLike[str]", TextIO, BinaryIO]


# ----------------------------
# Exceptions
# ----------------------------

class CSVError(Exception):
    """Base class for every error raised by delimcsv."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ResourceError(CSVError, OSError):
    """Raised when the input or output stream cannot be opened, read or written."""

    def __init__(self, *, source: str, reason: str) -> None:
        super().__init__(f"ResourceError(source={source!r}): {reason}", reason=reason)
        self.source = source    # path or stream repr


class ConfigurationError(CSVError, LookupError):
    """Raised when an unregistered dialect is selected for use."""

    def __init__(self, *, dialect: str, reason: str) -> None:
        super().__init__(f"ConfigurationError(dialect={dialect!r}): {reason}", reason=reason)
        self.dialect = dialect


# ----------------------------
# Dialect
# ----------------------------

@dataclass
class Dialect:
    """
    Parsing/formatting rules. Setters store their argument as-is and return
    the dialect so calls can be chained:

        Dialect().set_delimiter("::").set_trim_characters(" \\t").set_header(False)

    Nothing is validated; an empty delimiter is a caller error.
    """
    delimiter: str = ","
    quote_character: str = '"'
    double_quote: bool = True
    trim_characters: FrozenSet[str] = frozenset()
    skip_initial_space: bool = False
    header: bool = True
    skip_empty_rows: bool = False
    ignore_columns: FrozenSet[str] = frozenset()
    column_names: List[str] = field(default_factory=list)
    line_terminator: str = "\n"

    def set_delimiter(self, delimiter: str) -> Dialect:
        self.delimiter = delimiter
        return self

    def set_quote_character(self, quote_character: str) -> Dialect:
        self.quote_character = quote_character
        return self

    def set_double_quote(self, double_quote: bool) -> Dialect:
        self.double_quote = double_quote
        return self

    def set_trim_characters(self, characters: Iterable[str]) -> Dialect:
        self.trim_characters = frozenset(characters)
        return self

    def set_skip_initial_space(self, skip_initial_space: bool) -> Dialect:
        self.skip_initial_space = skip_initial_space
        return self

    def set_header(self, header: bool) -> Dialect:
        self.header = header
        return self

    def set_skip_empty_rows(self, skip_empty_rows: bool) -> Dialect:
        self.skip_empty_rows = skip_empty_rows
        return self

    def set_ignore_columns(self, columns: Iterable[str]) -> Dialect:
        self.ignore_columns = frozenset(columns)
        return self

    def set_column_names(self, names: Sequence[str]) -> Dialect:
        self.column_names = list(names)
        return self

    def set_line_terminator(self, line_terminator: str) -> Dialect:
        self.line_terminator = line_terminator
        return self


_PRESET_DELIMITERS: Dict[str, str] = {
    "unix": ",",
    "excel": ",",
    "excel_tab": "\t",
}


def preset_dialect(name: str) -> Dialect:
    """Build a fresh copy of one of the registered presets."""
    if name not in _PRESET_DELIMITERS:
        raise ConfigurationError(dialect=name, reason="No such preset")
    return (
        Dialect()
        .set_delimiter(_PRESET_DELIMITERS[name])
        .set_quote_character('"')
        .set_double_quote(True)
        .set_header(True)
    )


class DialectRegistry:
    """
    Name -> Dialect mapping owned by a Reader or Writer.

    configure() creates missing entries (configuration path); lookup() never
    does and raises ConfigurationError instead (use path).
    """
    def __init__(self, *, presets: bool = True) -> None:
        self._dialects: Dict[str, Dialect] = {}
        if presets:
            for name in _PRESET_DELIMITERS:
                self._dialects[name] = preset_dialect(name)

    def __contains__(self, name: object) -> bool:
        return name in self._dialects

    def __len__(self) -> int:
        return len(self._dialects)

    def names(self) -> List[str]:
        return sorted(self._dialects)

    def register(self, name: str, dialect: Dialect) -> Dialect:
        self._dialects[name] = dialect
        return dialect

    def configure(self, name: str = "excel") -> Dialect:
        if name not in self._dialects:
            logger.debug(f"Registering new default dialect {name!r}")
            self._dialects[name] = Dialect()
        return self._dialects[name]

    def get(self, name: str) -> Optional[Dialect]:
        return self._dialects.get(name)

    def lookup(self, name: str) -> Dialect:
        dialect = self._dialects.get(name)
        if dialect is None:
            raise ConfigurationError(dialect=name, reason="Dialect not found")
        return dialect


# ----------------------------
# Trimmer
# ----------------------------

def trim_field(value: str, trim_characters: FrozenSet[str]) -> str:
    """Strip characters of the trim set from both ends; no-op for an empty set."""
    if not trim_characters:
        return value
    return value.strip("".join(trim_characters))


# ----------------------------
# Tokenizer
# ----------------------------

class Tokenizer:
    """
    Splits one line (newline already removed) into field strings.

    `columns` is the expected field count; 0 means "not known yet" and
    disables truncation. The header line is tokenized with columns=0.
    """
    def __init__(self, dialect: Dialect, columns: int = 0) -> None:
        self.dialect = dialect
        self.columns = columns

    def split(self, line: str) -> List[str]:
        d = self.dialect
        delimiter = d.delimiter
        quote = d.quote_character
        n = len(line)

        result: List[str] = [""] * self.columns if line == "" else []

        chars: List[str] = []
        quotes = 0          # open-quote counter for the current field
        paired = False      # last char closed a doubled-quote pair
        i = 0
        while i < n:
            if quotes % 2 == 0 and line.startswith(delimiter, i):
                result.append(self.resolve_field("".join(chars)))
                chars = []
                quotes = 0
                paired = False
                i += len(delimiter)
                if d.skip_initial_space and i < n and line[i] == " ":
                    i += 1
                continue

            ch = line[i]
            if ch == quote:
                if d.double_quote and chars and chars[-1] == quote and not paired:
                    # second half of "": cancels the first, parity unchanged
                    quotes -= 1
                    paired = True
                else:
                    quotes += 1
                    paired = False
            else:
                paired = False
            chars.append(ch)
            i += 1

        # A trailing empty field after the last delimiter is not flushed here;
        # padding below restores it once the column count is known.
        if chars:
            result.append(self.resolve_field("".join(chars)))

        if len(result) < self.columns:
            logger.debug(f"Padding row from {len(result)} to {self.columns} fields")
            result.extend([""] * (self.columns - len(result)))
        elif self.columns and len(result) > self.columns:
            logger.debug(f"Truncating row from {len(result)} to {self.columns} fields")
            del result[self.columns:]
        return result

    def resolve_field(self, raw: str) -> str:
        """Trim, then strip enclosing quotes and collapse doubled quotes."""
        d = self.dialect
        value = trim_field(raw, d.trim_characters)
        q = d.quote_character
        if len(value) >= 2 and value[0] == q and value[-1] == q:
            value = value[1:-1]
            if d.double_quote:
                value = value.replace(q + q, q)
        return value


def tokenize(line: str, dialect: Optional[Dialect] = None, columns: int = 0) -> List[str]:
    return Tokenizer(dialect if dialect is not None else Dialect(), columns).split(line)


# ----------------------------
# Row assembly
# ----------------------------

def derive_header(first_fields: Sequence[str], dialect: Dialect) -> List[str]:
    """
    Header row used verbatim when the dialect has one; otherwise the configured
    column names, else "0", "1", ... sized on the first line.
    """
    if dialect.header:
        return list(first_fields)
    if dialect.column_names:
        return list(dialect.column_names)
    return [str(i) for i in range(len(first_fields))]


class RowAssembler:
    """Binds tokenized fields to header names by position."""

    def __init__(self, header: Sequence[str], ignore_columns: FrozenSet[str] = frozenset()) -> None:
        self.header = list(header)
        self.ignore_columns = ignore_columns
        self._template: Row = {name: "" for name in self.header if name not in ignore_columns}

    def assemble(self, fields: Sequence[str]) -> Row:
        row = dict(self._template)
        for name, value in zip(self.header, fields):
            if name not in self.ignore_columns:
                row[name] = value
        return row


# ----------------------------
# Input
# ----------------------------

def _describe(source: Any) -> str:
    if isinstance(source, (str, os.PathLike)):
        return os.fspath(source)
    return getattr(source, "name", None) or repr(source)


class LineSource:
    """
    Rewindable line source. Paths are opened here and closed on exit;
    caller streams are left open and rewound to where they were when handed
    over. Non-seekable streams are read into memory.
    Yielded lines have the trailing newline and one carriage return removed.
    """
    def __init__(self, source: Source, *, encoding: str = "utf-8") -> None:
        self.name = _describe(source)
        self._owned = isinstance(source, (str, os.PathLike))
        self._start = 0
        try:
            if self._owned:
                self._stream: TextIO = open(source, "r", encoding=encoding, newline="\n")
            elif source.seekable():
                self._stream = source
            else:
                self._stream = io.StringIO(source.read())
            self._start = self._stream.tell()
        except (OSError, ValueError) as e:
            raise ResourceError(source=self.name, reason=f"Failed to open: {e}") from e

    def __enter__(self) -> LineSource:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owned:
            self._stream.close()

    def rewind(self) -> None:
        self._stream.seek(self._start)

    def __iter__(self) -> Iterator[str]:
        for line in self._stream:
            if line.endswith("\n"):
                line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
            yield line

    def count_eligible(self, skip_empty_rows: bool) -> int:
        """Count lines the main pass would turn into rows (header included)."""
        return sum(1 for line in self if line != "" or not skip_empty_rows)


# ----------------------------
# Reader
# ----------------------------

class ParseResult(NamedTuple):
    rows: List[Row]
    header: List[str]
    shape: Tuple[int, int]     # (row count, column count)


class _DialectOwner:
    def __init__(self, registry: Optional[DialectRegistry], dialect: str) -> None:
        self.registry = registry if registry is not None else DialectRegistry()
        self.current_dialect_name = dialect

    def configure_dialect(self, name: str = "excel") -> Dialect:
        """Return the named dialect for configuration; a new one becomes current."""
        if name not in self.registry:
            self.current_dialect_name = name
        return self.registry.configure(name)

    def get_dialect(self, name: str) -> Optional[Dialect]:
        return self.registry.get(name)

    def list_dialects(self) -> List[str]:
        return self.registry.names()

    def use_dialect(self, name: str) -> None:
        self.registry.lookup(name)
        self.current_dialect_name = name


class Reader(_DialectOwner):
    """
    Parses a whole source per read() call. The row count and header are fixed
    before any row is produced; nothing is visible until the pass completes.
    Not reentrant; callers sharing a registry across threads must serialize.
    """
    def __init__(self, dialect: str = "excel", *, registry: Optional[DialectRegistry] = None) -> None:
        super().__init__(registry, dialect)
        self._header: List[str] = []
        self._rows: List[Row] = []
        self._columns = 0
        self._expected_rows = 0

    @property
    def rows(self) -> List[Row]:
        return list(self._rows)

    @property
    def cols(self) -> List[str]:
        return list(self._header)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._expected_rows, self._columns

    def result(self) -> ParseResult:
        return ParseResult(rows=self.rows, header=self.cols, shape=self.shape)

    def read(self, source: Source, rows: int = 0, *, encoding: str = "utf-8") -> ParseResult:
        """
        Parse `source` (path or text stream). `rows` bounds the number of data
        rows; when 0 a pre-scan counts eligible lines instead.
        """
        # private copy: configuration changes cannot leak into a running pass
        dialect = copy.deepcopy(self.registry.lookup(self.current_dialect_name))
        self._header, self._rows = [], []
        self._columns = self._expected_rows = 0

        logger.debug(f"Reading {_describe(source)!r} with dialect {self.current_dialect_name!r}")
        try:
            with LineSource(source, encoding=encoding) as lines:
                if rows > 0:
                    expected = rows
                else:
                    expected = lines.count_eligible(dialect.skip_empty_rows)
                    if dialect.header and expected > 0:
                        expected -= 1
                    lines.rewind()
                self._expected_rows = expected
                self._read_lines(lines, dialect)
        except CSVError:
            self._rows = []
            raise
        except (OSError, UnicodeDecodeError) as e:
            self._rows = []
            raise ResourceError(source=_describe(source), reason=f"Failed to read: {e}") from e

        logger.debug(f"Parsed {len(self._rows)} rows x {self._columns} columns")
        return self.result()

    def _read_lines(self, lines: LineSource, dialect: Dialect) -> None:
        tokenizer = Tokenizer(dialect)
        it = iter(lines)
        first_fields = tokenizer.split(next(it, ""))
        self._header = derive_header(first_fields, dialect)
        if not dialect.header:
            # first line is data
            lines.rewind()
            it = iter(lines)
        logger.debug(f"Header: {self._header!r}")

        self._columns = tokenizer.columns = len(self._header)
        assembler = RowAssembler(self._header, dialect.ignore_columns)

        count = 0
        for line in it:
            if count == self._expected_rows:
                break
            if line == "" and dialect.skip_empty_rows:
                continue
            self._rows.append(assembler.assemble(tokenizer.split(line)))
            count += 1


def reader(
    source: Source,
    dialect: str = "excel",
    *,
    rows: int = 0,
    registry: Optional[DialectRegistry] = None,
    encoding: str = "utf-8",
) -> ParseResult:
    return Reader(dialect, registry=registry).read(source, rows, encoding=encoding)


# ----------------------------
# Writer
# ----------------------------

class Writer(_DialectOwner):
    """
    Joins values with the current dialect's delimiter and line terminator.
    Values are written as given: no quoting or escaping. When the dialect has
    column names, they are written once as a header before the first row.

    `target` is a path (opened here, closed by close()), a text stream, or a
    binary stream; lines bound for a binary stream are encoded with `encoding`.
    Caller streams are never closed.
    """
    def __init__(
        self,
        target: Sink,
        dialect: str = "excel",
        *,
        registry: Optional[DialectRegistry] = None,
        encoding: str = "utf-8",
    ) -> None:
        super().__init__(registry, dialect)
        self.name = _describe(target)
        self._owned = isinstance(target, (str, os.PathLike))
        self._encoding = encoding
        self._binary = isinstance(target, (io.RawIOBase, io.BufferedIOBase))
        if self._owned:
            try:
                self._stream: TextIO = open(target, "w", encoding=encoding, newline="")
            except OSError as e:
                raise ResourceError(source=self.name, reason=f"Failed to open: {e}") from e
        else:
            self._stream = target
        self.header_written = False

    def __enter__(self) -> Writer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owned and not self._stream.closed:
            self._stream.close()

    def write_row_from_sequence(self, values: Sequence[Any]) -> None:
        self._write_row(["" if v is None else str(v) for v in values])

    def write_row_from_mapping(self, mapping: Mapping[str, Any]) -> None:
        """Values in column_names order; missing keys are written as ""."""
        names = self.registry.lookup(self.current_dialect_name).column_names
        self.write_row_from_sequence([mapping.get(name) for name in names])

    def write_rows(self, rows: Iterable[Sequence[Any]]) -> None:
        for r in rows:
            self.write_row_from_sequence(r)

    def _write_row(self, values: List[str]) -> None:
        dialect = self.registry.lookup(self.current_dialect_name)
        if not self.header_written:
            if dialect.column_names:
                self._write_line(dialect.column_names, dialect)
            self.header_written = True
        self._write_line(values, dialect)

    def _write_line(self, values: Sequence[str], dialect: Dialect) -> None:
        try:
            line = dialect.delimiter.join(values) + dialect.line_terminator
            self._stream.write(line.encode(self._encoding) if self._binary else line)
        except OSError as e:
            raise ResourceError(source=self.name, reason=f"Failed to write: {e}") from e


def writer(
    target: Sink,
    dialect: str = "excel",
    *,
    registry: Optional[DialectRegistry] = None,
    encoding: str = "utf-8",
) -> Writer:
    return Writer(target, dialect, registry=registry, encoding=encoding)


__all__ = [
    "CSVError",
    "ConfigurationError",
    "Dialect",
    "DialectRegistry",
    "LineSource",
    "ParseResult",
    "Reader",
    "ResourceError",
    "Row",
    "RowAssembler",
    "Tokenizer",
    "Writer",
    "derive_header",
    "preset_dialect",
    "reader",
    "tokenize",
    "trim_field",
    "writer",
]


# ----------------------------
# Quick example
# ----------------------------
if __name__ == "__main__":
    data = 'id,name,note\n1,Alice,"likes a, b"\n2,Bob,"said ""hi"""\n'
    result = reader(io.StringIO(data))
    for row in result.rows:
        print(row)
    # {'id': '1', 'name': 'Alice', 'note': 'likes a, b'}
    # {'id': '2', 'name': 'Bob', 'note': 'said "hi"'}
