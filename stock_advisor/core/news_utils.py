"""Utility helpers for the news stage: query variants, source naming and dedup."""

import re
from typing import Iterable, List, Sequence, TypeVar
from urllib.parse import urlparse

# Corporate suffixes stripped before constructing search queries.
# Only true legal suffixes; descriptors like 'Industries' are kept.
CORPORATE_SUFFIXES = [
    "limited", "ltd", "ltd.", "corporation", "corp", "corp.", "inc", "inc.",
    "incorporated", "plc", "co.", "llc",
]

A = TypeVar("A")


def strip_suffix(long_name: str) -> str:
    """Remove trailing corporate suffixes from a company name.

    Examples:
        ``"Apple Inc."`` → ``"Apple"``
        ``"Hindustan Zinc Ltd."`` → ``"Hindustan Zinc"``

    Args:
        long_name (str): Full company name as supplied by the caller.

    Returns:
        str: Name with trailing corporate suffix removed, stripped of whitespace.
    """
    pattern = r"[\s,]+(" + "|".join(re.escape(s) for s in CORPORATE_SUFFIXES) + r")[\s.]*$"
    return re.sub(pattern, "", long_name, flags=re.IGNORECASE).strip()


def build_search_queries(ticker: str, company_name: str) -> List[str]:
    """Return the ordered query variants searched for one ticker.

    Company-name variants use the suffix-stripped name so that
    ``"Apple Inc."`` searches as ``"Apple news"``.
    """
    ticker = ticker.upper()
    name = strip_suffix(company_name) or company_name.strip() or ticker
    return [
        f"{ticker} earnings",
        f"{name} news",
        f"{ticker} stock news",
        f"{name} financial results",
        f"{ticker} product launch",
        f"{ticker} regulatory",
        f"{ticker} lawsuit",
        f"{name} partnership",
        f"{ticker} analyst rating",
    ]


def source_from_url(url: str) -> str:
    """Derive a short publisher name from an article url.

    ``"https://www.reuters.com/markets/..."`` → ``"reuters"``; unparsable → ``"Unknown"``.
    """
    host = urlparse(url or "").hostname
    if not host:
        return "Unknown"
    host = re.sub(r"^www\.", "", host)
    return host.split(".")[0] or "Unknown"


def dedupe_by_url(batches: Iterable[Sequence[A]], key=lambda item: item["url"]) -> List[A]:
    """Flatten query result batches, keeping the first occurrence of each url.

    Items without a url are dropped since they cannot be deduplicated.
    """
    seen = set()
    unique: List[A] = []
    for batch in batches:
        for item in batch:
            url = key(item)
            if not url or url in seen:
                continue
            seen.add(url)
            unique.append(item)
    return unique
