"""Driver rating: scale conversion and submission."""

from __future__ import annotations

from dataclasses import dataclass

from .backend import BackendClient, RatingSubmissionError
from .schemas import Travel

RAW_STEP = 20
LABELS = ("Terrible", "Bad", "Regular", "Good", "Great")


class InvalidRatingError(ValueError):
    """Raw rating is not one of the five star positions."""


@dataclass(frozen=True)
class RatingScore:
    stars: int
    label: str


def normalize_rating(raw: int) -> RatingScore:
    """Convert the 0-100 widget value into 1-5 stars.

    Only exact multiples of 20 between 20 and 100 map to a star.
    """

    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidRatingError(f"rating must be an integer, got {raw!r}")
    stars, rest = divmod(raw, RAW_STEP)
    if rest or not 1 <= stars <= len(LABELS):
        raise InvalidRatingError(f"rating {raw} is not a multiple of {RAW_STEP} in 20..100")
    return RatingScore(stars=stars, label=LABELS[stars - 1])


async def submit_rating(
    client: BackendClient,
    travel: Travel,
    token: str,
    raw: int,
    description: str,
) -> RatingScore:
    """Rate the driver of ``travel``; validation happens before any call."""

    score = normalize_rating(raw)
    if travel.driver is None:
        raise RatingSubmissionError("The travel has no driver to rate")
    await client.rate_driver(travel.driver.id, token, score.stars, description)
    return score
