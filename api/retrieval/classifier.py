"""
Query classification.

A raw query string is matched against an ordered list of shape rules. The
first rule that matches decides which field gets an exact `term` filter;
a query no rule matches becomes a phrase search over the message text.

Order matters: the shapes overlap (e.g. "1234.000" is both an amount and a
transaction id), and amount wins.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from core.records import (
    FIELD_AMOUNT,
    FIELD_DATE,
    FIELD_MESSAGE,
    FIELD_TRANSACTION_ID,
    keyword_field,
)


class QueryField(str, Enum):
    AMOUNT = FIELD_AMOUNT
    DATE = FIELD_DATE
    TRANSACTION_ID = FIELD_TRANSACTION_ID
    MESSAGE = FIELD_MESSAGE


# Grouped thousands with "." and a literal ".000" tail: 1.000, 12.345.000, 1.234.567.890.000.
# The group separators are optional ("1234.000").
AMOUNT_PATTERN = re.compile(
    r"^(\d{1,3}\.*\d{3}\.*\d{3}\.*\d{3}\.000"
    r"|\d{1,3}\.*\d{3}\.*\d{3}\.000"
    r"|\d{1,3}\.*\d{3}\.000"
    r"|\d{1,3}\.000)$"
)
DATE_PATTERN = re.compile(r"^\d{2}/\d{2}/\d{4}$")
TRANSACTION_ID_PATTERN = re.compile(r"^\d{4,5}\.\d{2,9}$")

QUERY_RULES: tuple[tuple[re.Pattern[str], QueryField], ...] = (
    (AMOUNT_PATTERN, QueryField.AMOUNT),
    (DATE_PATTERN, QueryField.DATE),
    (TRANSACTION_ID_PATTERN, QueryField.TRANSACTION_ID),
)


def classify(query: str) -> QueryField:
    for pattern, field in QUERY_RULES:
        if pattern.match(query):
            return field
    return QueryField.MESSAGE


def build_filter(query: str) -> tuple[QueryField, dict[str, Any]]:
    """
    Return (field, Elasticsearch query) for a raw query string.

    Structured fields get an exact `term` on their keyword form with the
    query taken verbatim; free text gets `match_phrase` on the message.
    """
    field = classify(query)
    if field is QueryField.MESSAGE:
        return field, {"match_phrase": {FIELD_MESSAGE: {"query": query}}}
    return field, {"term": {keyword_field(field.value): {"value": query}}}
