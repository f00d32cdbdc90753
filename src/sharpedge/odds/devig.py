"""American-odds conversion and proportional two-way devig."""


def implied_probability(american_odds: float) -> float:
    """Convert American odds to a vig-inclusive implied probability.

    Args:
        american_odds: Signed American odds (e.g. -118, +100). Zero is not a
            valid price and is not handled.

    Returns:
        Implied probability in (0, 1)

    Example:
        >>> round(implied_probability(-118), 4)
        0.5413
        >>> implied_probability(100)
        0.5
    """
    if american_odds > 0:
        return 100.0 / (american_odds + 100.0)
    magnitude = abs(american_odds)
    return magnitude / (magnitude + 100.0)


def devig(prob_a: float, prob_b: float) -> tuple[float, float]:
    """Remove the bookmaker margin from a two-way market proportionally.

    Args:
        prob_a: Implied probability of the first outcome
        prob_b: Implied probability of the second outcome

    Returns:
        Fair probabilities ``(a, b)`` summing to 1.0
    """
    total = prob_a + prob_b
    return prob_a / total, prob_b / total


def vig(prob_a: float, prob_b: float) -> float:
    """Bookmaker overround of a two-way market (0.04 means 4% margin)."""
    return prob_a + prob_b - 1.0
