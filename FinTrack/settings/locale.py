"""
Locale-aware number, currency and date formatting using Babel.

"""
import datetime
import logging
from typing import List, Optional

from babel import Locale, dates, numbers

DEFAULT_LOCALE: str = 'id_ID'

CURRENCY_MAP: dict[str, str] = {
    'ID': 'IDR',
    'US': 'USD',
    'GB': 'GBP',
    'DE': 'EUR',
    'FR': 'EUR',
    'NL': 'EUR',
    'JP': 'JPY',
    'AU': 'AUD',
    'SG': 'SGD',
    'MY': 'MYR',
    'IN': 'INR',
    'HU': 'HUF',
}

LOCALE_MAP: List[str] = [
    'id_ID',
    'en_US',
    'en_GB',
    'en_AU',
    'en_SG',
    'ms_MY',
    'en_IN',
    'de_DE',
    'fr_FR',
    'nl_NL',
    'ja_JP',
    'hu_HU',
]


def get_currency_from_locale(locale: str) -> str:
    """
    Retrieve the default currency code based on the locale's territory.

    Args:
        locale (str): Locale string, e.g. 'id_ID'.

    Returns:
        str: Currency code such as 'IDR'. Defaults to 'IDR' if the territory is unknown.
    """
    parts = locale.split('_')
    if len(parts) < 2:
        return 'IDR'
    return CURRENCY_MAP.get(parts[1], 'IDR')


def format_float(value: float, locale: str) -> str:
    """
    Format a float as a decimal string according to the locale conventions.

    Args:
        value (float): The numeric value to be formatted.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted decimal string.
    """
    try:
        return numbers.format_decimal(value, locale=Locale.parse(locale))
    except (ValueError, TypeError) as ex:
        logging.debug(f'Error formatting decimal "{value}" for locale "{locale}": {ex}')
        return str(value)


def format_currency_value(value: float, locale: str, currency: Optional[str] = None, decimals: int = 0) -> str:
    """
    Format a number as a currency string with a fixed number of decimal places.

    Args:
        value (float): The numeric value to be formatted. Negative values keep their sign.
        locale (str): Locale string, e.g. 'id_ID'.
        currency (str, optional): ISO currency code. Derived from the locale territory when omitted.
        decimals (int): Number of decimal places to render.

    Returns:
        str: The formatted currency string.
    """
    currency = currency or get_currency_from_locale(locale)
    try:
        locale_obj = Locale.parse(locale)
        # Parse a fresh copy, the locale's own pattern object is shared
        pattern = numbers.parse_pattern(locale_obj.currency_formats['standard'].pattern)
        pattern.frac_prec = (decimals, decimals)
        return pattern.apply(
            round(value, decimals),
            locale_obj,
            currency=currency,
            currency_digits=False,
        )
    except (ValueError, TypeError) as ex:
        logging.error(f'Error formatting currency "{value}": {ex}')
        return str(value)


def format_date(value: datetime.date, locale: str, fmt: str = 'd MMM yyyy') -> str:
    """
    Format a date using a CLDR pattern in the given locale.

    Args:
        value (datetime.date): The date to format.
        locale (str): Locale string, e.g. 'id_ID'.
        fmt (str): CLDR date pattern, e.g. 'MMMM yyyy'.

    Returns:
        str: The formatted date.
    """
    return dates.format_date(value, format=fmt, locale=Locale.parse(locale))
