"""Progress tiers and country fill colors."""

import logging
from typing import Any, Iterable, List, Optional, Union

from ..config.months import MONTHS, get_month_by_country
from ..models.schemas import CountryProgress, MonthConfig

logger = logging.getLogger(__name__)

NEUTRAL_COLOR = "#F5F5F5"  # countries not started or not assigned to a month
COUNTRY_ISO_PROPERTY = "ADM0_A3"  # feature property holding iso3 in the country tiles

# Upper bound (inclusive) of tiers 1..4; anything above is tier 5
_TIER_UPPER_BOUNDS = (20, 40, 60, 80)

TIER_LABELS = {
    1: "Iniciado (0-20%)",
    2: "Em Progresso (21-40%)",
    3: "No Meio (41-60%)",
    4: "Quase Completo (61-80%)",
    5: "Completo (81-100%)",
}


def _clamp_progress(progress: Any) -> float:
    try:
        value = float(progress)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(100.0, value))


def tier_of(progress: Any) -> int:
    """
    Map a progress percentage to a color tier.

    Values on a boundary (20, 40, 60, 80) belong to the lower tier.
    Non-numeric input counts as 0; out-of-range input is clamped.

    Args:
        progress: Progress value, nominally 0-100

    Returns:
        Tier number 1 (lightest) .. 5 (full color)
    """
    p = _clamp_progress(progress)
    for tier, upper in enumerate(_TIER_UPPER_BOUNDS, start=1):
        if p <= upper:
            return tier
    return 5


def tier_label(progress: Any) -> str:
    """Human-readable tier label for tooltips and legends."""
    return TIER_LABELS[tier_of(progress)]


def month_of(iso3: str, palette: Optional[List[MonthConfig]] = None) -> Optional[MonthConfig]:
    """Month a country belongs to, or None."""
    return get_month_by_country(iso3, palette if palette is not None else MONTHS)


def color_of(
    iso3: str,
    progress: Any,
    palette: Optional[List[MonthConfig]] = None,
    neutral_color: str = NEUTRAL_COLOR,
) -> str:
    """
    Resolve the fill color of a country at a given progress.

    Args:
        iso3: ISO 3166-1 alpha-3 code
        progress: Progress value, nominally 0-100
        palette: Month palette (defaults to the challenge months)
        neutral_color: Returned for countries without a month

    Returns:
        Hex color string
    """
    month = month_of(iso3, palette)
    if month is None:
        logger.warning(f"Country {iso3} not assigned to any month; using neutral color")
        return neutral_color
    return month.tier_colors[tier_of(progress) - 1]


def build_fill_color_expression(
    countries: Iterable[Union[CountryProgress, dict]],
    palette: Optional[List[MonthConfig]] = None,
    neutral_color: str = NEUTRAL_COLOR,
    iso_property: str = COUNTRY_ISO_PROPERTY,
) -> Union[str, list]:
    """
    Build one match expression coloring every country with progress.

    Countries without progress fall through to the neutral color. With no
    progress at all the neutral color itself is returned, since a match
    expression needs at least one label/output pair.

    Returns:
        Either a hex color or ["match", ["get", iso_property], iso, color, ..., neutral]
    """
    expression: list = ["match", ["get", iso_property]]
    seen = set()

    for entry in countries:
        if isinstance(entry, dict):
            entry = CountryProgress(**entry)
        # match labels must be unique
        if entry.iso3 in seen:
            continue
        seen.add(entry.iso3)
        expression.extend([entry.iso3, color_of(entry.iso3, entry.progress, palette, neutral_color)])

    if not seen:
        return neutral_color

    expression.append(neutral_color)
    return expression
