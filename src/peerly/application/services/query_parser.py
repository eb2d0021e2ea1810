# src/peerly/application/services/query_parser.py
"""
Boolean keyword query parser.

Grammar (tokenization only):
- bare terms, ``"quoted phrases"``, ``field:value`` / ``field:"quoted value"``
- operators ``AND`` / ``OR`` / ``NOT`` as standalone upper-case words, and the
  symbolic aliases ``&&`` / ``&``, ``||`` / ``|``, ``!``
- ``(`` and ``)`` grouping

Upstream sources get a bag of terms and phrases; the boolean structure is parsed
but not forwarded. The Paper Store gets ``(column, term)`` pairs that it ORs together.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

TERM = "term"
PHRASE = "phrase"
FIELD = "field"
OPERATOR = "operator"
LPAREN = "lparen"
RPAREN = "rparen"

_WORD_OPERATORS = {"AND", "OR", "NOT"}
_FIELD_RE = re.compile(r"[A-Za-z_]+:")

SIMPLE_COLUMNS = ("title", "abstract", "journal", "conference")
_FIELD_COLUMNS = {
    "title": ("title",),
    "author": ("author",),
    "year": ("year",),
    "journal": ("journal",),
}
_UNKNOWN_FIELD_COLUMNS = ("title", "abstract")


@dataclass(frozen=True)
class SearchToken:
    type: str
    value: str
    field: Optional[str] = None


@dataclass
class ParsedQuery:
    original: str
    tokens: List[SearchToken] = field(default_factory=list)
    is_advanced: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.original

    def terms(self) -> List[str]:
        """Values of term and phrase tokens, in query order."""
        return [t.value for t in self.tokens if t.type in (TERM, PHRASE) and t.value]


class SearchQueryParser:
    """Single-pass tokenizer over one query string."""

    def __init__(self, query: str):
        self.query = (query or "").strip()
        self.position = 0

    def parse(self) -> ParsedQuery:
        tokens: List[SearchToken] = []
        is_advanced = False

        while self.position < len(self.query):
            char = self.query[self.position]
            if char.isspace():
                self.position += 1
            elif char == "(":
                tokens.append(SearchToken(LPAREN, "("))
                self.position += 1
                is_advanced = True
            elif char == ")":
                tokens.append(SearchToken(RPAREN, ")"))
                self.position += 1
                is_advanced = True
            elif char in "&|!":
                tokens.append(SearchToken(OPERATOR, self._read_symbol_operator()))
                is_advanced = True
            elif char == '"':
                tokens.append(SearchToken(PHRASE, self._read_quoted()))
                is_advanced = True
            elif _FIELD_RE.match(self.query, self.position):
                tokens.append(self._read_field())
                is_advanced = True
            else:
                term = self._read_term()
                if term in _WORD_OPERATORS:
                    tokens.append(SearchToken(OPERATOR, term))
                    is_advanced = True
                else:
                    tokens.append(SearchToken(TERM, term))

        return ParsedQuery(original=self.query, tokens=tokens, is_advanced=is_advanced)

    def _read_symbol_operator(self) -> str:
        char = self.query[self.position]
        self.position += 1
        if char in "&|" and self.query[self.position : self.position + 1] == char:
            self.position += 1
        return {"&": "AND", "|": "OR", "!": "NOT"}[char]

    def _read_quoted(self) -> str:
        self.position += 1  # opening quote
        end = self.query.find('"', self.position)
        if end == -1:
            end = len(self.query)
        phrase = self.query[self.position : end]
        self.position = min(end + 1, len(self.query))
        return phrase.strip()

    def _read_field(self) -> SearchToken:
        colon = self.query.index(":", self.position)
        name = self.query[self.position : colon]
        self.position = colon + 1
        if self.query[self.position : self.position + 1] == '"':
            value = self._read_quoted()
        else:
            value = self._read_term()
        return SearchToken(FIELD, value, field=name.lower())

    def _read_term(self) -> str:
        start = self.position
        while self.position < len(self.query):
            char = self.query[self.position]
            if char.isspace() or char in '()&|!"':
                break
            self.position += 1
        return self.query[start : self.position]


def parse_search_query(query: str) -> ParsedQuery:
    return SearchQueryParser(query).parse()


def build_source_query(parsed: ParsedQuery) -> str:
    """Plain keyword string for upstream APIs; boolean structure is dropped."""
    if not parsed.is_advanced:
        return parsed.original
    terms = parsed.terms()
    if not terms:
        terms = [t.value for t in parsed.tokens if t.type == FIELD and t.value]
    return " ".join(terms)


def build_store_conditions(parsed: ParsedQuery) -> List[Tuple[str, str]]:
    """``(column, term)`` pairs for a case-insensitive substring OR-search."""
    if not parsed.original:
        return []
    if not parsed.is_advanced:
        return [(column, parsed.original) for column in SIMPLE_COLUMNS]

    conditions: List[Tuple[str, str]] = []
    for token in parsed.tokens:
        if not token.value:
            continue
        if token.type in (TERM, PHRASE):
            conditions.extend((column, token.value) for column in SIMPLE_COLUMNS)
        elif token.type == FIELD:
            columns = _FIELD_COLUMNS.get(token.field or "", _UNKNOWN_FIELD_COLUMNS)
            conditions.extend((column, token.value) for column in columns)

    if not conditions:
        return [(column, parsed.original) for column in SIMPLE_COLUMNS]
    return conditions
