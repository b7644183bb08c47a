"""
Delimited-text record parser.

Splits one line of delimited text into field strings, honoring double-quote
quoting and the doubled-quote escape. The parser scans the line with
str.find() and copies whole slices between special characters instead of
appending character by character.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from src.exceptions import ConfigurationError, RowParseError


logger = logging.getLogger(__name__)

QUOTE = '"'


@dataclass
class ParsedRow:
    """
    One parsed line of input.

    Attributes:
        fields: Raw field strings in column order.
        line_number: 1-based line number in the source text.
    """
    fields: List[str] = field(default_factory=list)
    line_number: int = 0


class RecordParser:
    """
    Parser for single lines of delimited text.

    A field is closed by the delimiter only outside quotes. Inside quotes a
    doubled quote stands for one literal quote; any other quote toggles the
    quoted state. The last field is always emitted, so a line containing N
    delimiters yields N + 1 fields.

    Attributes:
        delimiter: Single-character field delimiter.
        trim_whitespace: Strip surrounding whitespace from each field.
        strict_quotes: Raise RowParseError for an unterminated quote instead
            of accepting the line as-is.
    """

    def __init__(
        self,
        delimiter: str = ",",
        trim_whitespace: bool = True,
        strict_quotes: bool = False,
    ) -> None:
        if len(delimiter) != 1:
            raise ConfigurationError(
                f"Field delimiter must be a single character, got {delimiter!r}"
            )
        if delimiter == QUOTE:
            raise ConfigurationError("Field delimiter cannot be the quote character")

        self.delimiter = delimiter
        self.trim_whitespace = trim_whitespace
        self.strict_quotes = strict_quotes

    @classmethod
    def from_config(cls, config) -> "RecordParser":
        """Create a parser from an ImportConfig."""
        return cls(
            delimiter=config.field_delimiter,
            trim_whitespace=config.trim_whitespace,
            strict_quotes=config.strict_quotes,
        )

    def _close(self, chunks: List[str]) -> str:
        value = chunks[0] if len(chunks) == 1 else "".join(chunks)
        return value.strip() if self.trim_whitespace else value

    def parse_line(self, line: str) -> List[str]:
        """
        Split a line into fields.

        Args:
            line: One line of text, without its line terminator.

        Returns:
            List[str]: Field values in column order.

        Raises:
            RowParseError: Only in strict mode, for an unterminated quote.
        """
        fields: List[str] = []
        chunks: List[str] = []
        delimiter = self.delimiter
        in_quotes = False
        start = 0
        length = len(line)

        while start <= length:
            next_quote = line.find(QUOTE, start)

            if in_quotes:
                # Delimiters are literal content while quoted
                if next_quote == -1:
                    break
                chunks.append(line[start:next_quote])
                if next_quote + 1 < length and line[next_quote + 1] == QUOTE:
                    chunks.append(QUOTE)
                    start = next_quote + 2
                else:
                    in_quotes = False
                    start = next_quote + 1
                continue

            next_delim = line.find(delimiter, start)
            if next_delim != -1 and (next_quote == -1 or next_delim < next_quote):
                chunks.append(line[start:next_delim])
                fields.append(self._close(chunks))
                chunks = []
                start = next_delim + 1
            elif next_quote != -1:
                chunks.append(line[start:next_quote])
                in_quotes = True
                start = next_quote + 1
            else:
                break

        if in_quotes and self.strict_quotes:
            raise RowParseError("Unterminated quoted field")

        chunks.append(line[start:])
        fields.append(self._close(chunks))
        return fields

    def parse_row(self, line: str, line_number: int) -> ParsedRow:
        """Parse a line and attach its source line number."""
        return ParsedRow(fields=self.parse_line(line), line_number=line_number)
