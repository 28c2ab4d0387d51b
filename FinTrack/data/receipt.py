"""Heuristics that turn OCR text of a shop receipt into transaction fields.

The text extraction itself happens elsewhere; this module only reads plain text.
"""
import dataclasses
import datetime
import logging
import re
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .helpers import today_iso
from .models import TransactionType

MAX_RECEIPT_AMOUNT: int = 100_000_000
DEFAULT_DESCRIPTION: str = 'Receipt scan'

AMOUNT_PATTERNS: List[Pattern] = [
    re.compile(r'(?:total|jumlah|grand\s*total|amount)\s*[:\s]*(?:rp\.?\s*)?([0-9.,]+)', re.IGNORECASE),
    re.compile(r'(?:rp\.?\s*)([0-9.,]+)', re.IGNORECASE),
    re.compile(r'([0-9]{1,3}(?:[.,][0-9]{3})+)'),
]

NUMERIC_DATE_PATTERN: Pattern = re.compile(r'(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})')
NAMED_DATE_PATTERN: Pattern = re.compile(
    r'(\d{1,2})\s*(jan|feb|mar|apr|mei|jun|jul|agu|sep|okt|nov|des)\w*\s*(\d{2,4})',
    re.IGNORECASE
)

MONTHS: Dict[str, int] = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'mei': 5, 'jun': 6,
    'jul': 7, 'agu': 8, 'sep': 9, 'okt': 10, 'nov': 11, 'des': 12,
}

# keyword -> default category name
CATEGORY_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
    (('makan', 'resto', 'food'), 'Makanan'),
    (('apotek', 'farmasi'), 'Kesehatan'),
    (('mart', 'belanja', 'supermarket'), 'Belanja'),
]


def parse_receipt_amount(text: str) -> Optional[int]:
    """Find the paid amount in receipt text.

    Patterns are tried in order: a labelled total, then a number prefixed with ``Rp``, then any
    thousands-grouped number. Grouping separators are stripped before parsing and the first
    match of a pattern must lie strictly between zero and 100 million to be accepted.

    Returns:
        int | None: The amount, or None if nothing usable was found.
    """
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        digits = re.sub(r'[.,]', '', match.group(1))
        if not digits:
            continue
        value = int(digits)
        if 0 < value < MAX_RECEIPT_AMOUNT:
            return value
    return None


def parse_receipt_date(text: str) -> Optional[str]:
    """Find the purchase date in receipt text.

    Understands ``D/M/Y`` (or ``D-M-Y``) and ``D <month> Y`` with Indonesian month
    abbreviations. Two-digit years are read as ``20yy``.

    Returns:
        str | None: The date as ``YYYY-MM-DD``, or None.
    """
    for pattern in (NUMERIC_DATE_PATTERN, NAMED_DATE_PATTERN):
        match = pattern.search(text)
        if not match:
            continue

        day = int(match.group(1))
        month_token = match.group(2)
        if month_token.isdigit():
            month = int(month_token)
        else:
            month = MONTHS.get(month_token[:3].lower(), 1)
        year = int(match.group(3))
        if year < 100:
            year += 2000

        try:
            return datetime.date(year, month, day).isoformat()
        except ValueError:
            logging.debug(f'Ignoring impossible receipt date "{match.group(0)}"')
            continue
    return None


def suggest_receipt_category(text: str) -> Optional[str]:
    lowered = text.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return None


@dataclasses.dataclass
class ReceiptDraft:
    """Values read from a receipt, ready to be reviewed before saving."""
    raw_text: str
    amount: Optional[int] = None
    date: str = ''
    category: Optional[str] = None
    description: str = DEFAULT_DESCRIPTION

    @property
    def is_complete(self) -> bool:
        return self.amount is not None and bool(self.category)

    def to_transaction_fields(self) -> Dict[str, Any]:
        """Fields for :meth:`FinTrack.core.store.LedgerStore.add_transaction`."""
        return {
            'date': self.date,
            'amount': float(self.amount or 0),
            'type': TransactionType.Expense.value,
            'category': self.category or '',
            'description': self.description,
        }


def parse_receipt(text: str, today: Optional[str] = None) -> ReceiptDraft:
    """Build a :class:`ReceiptDraft` from receipt text. Dates default to today."""
    draft = ReceiptDraft(
        raw_text=text,
        amount=parse_receipt_amount(text),
        date=parse_receipt_date(text) or today or today_iso(),
        category=suggest_receipt_category(text),
    )
    logging.debug(f'Parsed receipt: amount={draft.amount}, date={draft.date}, category={draft.category}')
    return draft
