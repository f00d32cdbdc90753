"""Sharp-book consensus: fresh, de-vigged, outlier-filtered fair probability.

Each trusted book contributes equally. A book is dropped when it is
missing, stale, lacks a clean two-outcome market, or does not quote the
target outcome by exact name. Outlier rejection only runs when three or
more books survive and they genuinely disagree.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

import numpy as np

from sharpedge.ingestion.base import OddsMatch
from sharpedge.odds.devig import devig, implied_probability, vig

logger = logging.getLogger(__name__)

# Below this dispersion the books agree; differences are noise
OUTLIER_MIN_STD = 0.01
OUTLIER_STD_MULTIPLE = 2.0
OUTLIER_MIN_BOOKS = 3


class ExclusionReason(str, Enum):
    """Why a trusted book did not contribute to consensus."""

    MISSING = "missing"
    STALE = "stale"
    MALFORMED = "malformed"
    NO_MATCH = "no_match"
    OUTLIER = "outlier"


@dataclass(frozen=True)
class BookProbability:
    """One book's contribution to consensus for the target outcome."""

    key: str
    odds: int
    raw_prob: float
    fair_prob: float
    vig: float


@dataclass(frozen=True)
class ExcludedBook:
    key: str
    reason: ExclusionReason
    detail: str = ""


@dataclass(frozen=True)
class ConsensusResult:
    """Fair probability for one outcome of one match.

    ``fair_prob`` is the unweighted mean of ``books`` (the post-filter
    survivors) and ``variance`` their population variance.
    """

    fair_prob: float
    book_count: int
    variance: float
    books: tuple[BookProbability, ...]
    excluded: tuple[ExcludedBook, ...] = field(default_factory=tuple)

    @property
    def book_probs(self) -> list[float]:
        return [b.fair_prob for b in self.books]


def reject_outliers(
    books: list[BookProbability],
) -> tuple[list[BookProbability], list[ExcludedBook]]:
    """
    Drop books more than two standard deviations from the median.

    Args:
        books: Candidate contributions

    Returns:
        (kept, excluded) lists

    Notes:
        - Skipped entirely for fewer than 3 books
        - Dispersion is measured around the median (upper median for even
          counts) and filtering is skipped when it is at most 1%
    """
    if len(books) < OUTLIER_MIN_BOOKS:
        return books, []

    probs = np.array([b.fair_prob for b in books])
    median = float(np.sort(probs)[len(probs) // 2])
    std = float(np.sqrt(np.mean((probs - median) ** 2)))

    if std <= OUTLIER_MIN_STD:
        return books, []

    threshold = OUTLIER_STD_MULTIPLE * std
    kept = []
    excluded = []
    for book in books:
        if abs(book.fair_prob - median) <= threshold:
            kept.append(book)
        else:
            excluded.append(
                ExcludedBook(
                    book.key,
                    ExclusionReason.OUTLIER,
                    f"{book.fair_prob:.1%} vs median {median:.1%}",
                )
            )
    return kept, excluded


def build_consensus(
    match: OddsMatch,
    outcome: str,
    trusted_sources: list[str],
    max_age: timedelta,
    min_sources: int,
    now: datetime | None = None,
) -> ConsensusResult | None:
    """
    Build the consensus fair probability for ``outcome`` in ``match``.

    Args:
        match: Sportsbook match with per-book two-way markets
        outcome: Target outcome name, matched exactly against book outcomes
        trusted_sources: Allow-list of book keys (order carries no weight)
        max_age: Freshness window for a book's last update
        min_sources: Minimum books required before and after outlier rejection
        now: Reference time (defaults to current UTC time)

    Returns:
        ConsensusResult, or None if too few books survive
    """
    now = now or datetime.now(timezone.utc)
    contributions: list[BookProbability] = []
    excluded: list[ExcludedBook] = []

    for key in trusted_sources:
        book = match.book(key)
        if book is None:
            excluded.append(ExcludedBook(key, ExclusionReason.MISSING))
            continue

        age = now - book.last_update
        if age > max_age:
            excluded.append(
                ExcludedBook(key, ExclusionReason.STALE, f"{age.total_seconds() / 60:.0f}m old")
            )
            continue

        if book.market is None:
            excluded.append(ExcludedBook(key, ExclusionReason.MALFORMED))
            continue

        target = book.market.quote_for(outcome)
        if target is None:
            excluded.append(ExcludedBook(key, ExclusionReason.NO_MATCH, f'no outcome "{outcome}"'))
            continue

        other = book.market.other_side(target)
        raw_target = implied_probability(target.price)
        raw_other = implied_probability(other.price)
        fair_target, _ = devig(raw_target, raw_other)
        contributions.append(
            BookProbability(
                key=key,
                odds=target.price,
                raw_prob=raw_target,
                fair_prob=fair_target,
                vig=vig(raw_target, raw_other),
            )
        )

    if len(contributions) < min_sources:
        logger.debug(
            f"Consensus unavailable for {outcome} ({match.id}): "
            f"{len(contributions)}/{min_sources} books"
        )
        return None

    kept, outliers = reject_outliers(contributions)
    excluded.extend(outliers)
    for outlier in outliers:
        logger.debug(f"Outlier book {outlier.key} for {outcome}: {outlier.detail}")

    if len(kept) < min_sources:
        return None

    probs = np.array([b.fair_prob for b in kept])
    # np.var is the population variance (ddof=0); a single book has none
    variance = float(np.var(probs)) if len(kept) > 1 else 0.0

    return ConsensusResult(
        fair_prob=float(np.mean(probs)),
        book_count=len(kept),
        variance=variance,
        books=tuple(kept),
        excluded=tuple(excluded),
    )
