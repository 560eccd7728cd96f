"""Month palette for the reading challenge.

Each month owns a set of countries (ISO 3166-1 alpha-3) and a base color.
The five tier colors run from a pale tint of the base color (tier 1) to the
base color itself (tier 5).
"""

from typing import Any, Dict, List, Optional, Tuple

from ..models.schemas import MonthConfig

# Share of the base color mixed into white for tiers 1..5
TIER_MIX = (0.2, 0.4, 0.6, 0.8, 1.0)


def _hex_to_rgb(color: str) -> Tuple[int, int, int]:
    value = color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Invalid hex color: {color}")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def tier_shades(base_color: str) -> Tuple[str, str, str, str, str]:
    """Blend a base color toward white for each tier."""
    r, g, b = _hex_to_rgb(base_color)
    shades = []
    for mix in TIER_MIX:
        shades.append(
            "#{:02X}{:02X}{:02X}".format(
                round(255 + (r - 255) * mix),
                round(255 + (g - 255) * mix),
                round(255 + (b - 255) * mix),
            )
        )
    return tuple(shades)


def _month(name: str, color: str, countries: List[str]) -> MonthConfig:
    return MonthConfig(
        name=name, color=color, countries=countries, tier_colors=tier_shades(color)
    )


MONTHS: List[MonthConfig] = [
    _month(
        "Janeiro",
        "#FF1744",  # Vibrant Red
        ["BRA", "GUF", "SUR", "GUY", "VEN", "COL", "ECU", "PER", "BOL", "CHL", "PRY", "ARG", "URY"],
    ),
    _month(
        "Fevereiro",
        "#00E5FF",  # Bright Cyan
        ["CHN", "JPN", "KOR", "PRK", "PHL", "IDN", "BTN", "MNG", "LAO", "NPL", "VNM", "BRN",
         "MYS", "TLS", "KAZ", "KHM", "THA", "MMR", "SGP", "TWN"],
    ),
    _month(
        "Março",
        "#FFD600",  # Vivid Yellow
        ["PRT", "ESP", "FRA", "AND", "MCO", "ITA", "MLT", "VAT", "SMR"],
    ),
    _month(
        "Abril",
        "#00E676",  # Bright Green
        ["GNQ", "GAB", "COG", "COD", "UGA", "KEN", "RWA", "BDI", "TZA", "AGO", "ZMB", "MWI",
         "MOZ", "ZWE", "BWA", "NAM", "ZAF", "LSO", "SWZ", "MDG", "STP", "MUS", "SYC", "COM"],
    ),
    _month(
        "Maio",
        "#FF6F00",  # Vibrant Orange
        ["GTM", "BLZ", "SLV", "HND", "NIC", "CRI", "PAN", "BHS", "CUB", "JAM", "HTI", "DOM",
         "PRI", "KNA", "ATG", "MSR", "DMA", "LCA", "BRB", "GRD", "TTO", "VCT"],
    ),
    _month(
        "Junho",
        "#D500F9",  # Bright Purple
        ["GBR", "IRL", "ISL", "NOR", "SWE", "FIN"],
    ),
    _month(
        "Julho",
        "#2979FF",  # Vivid Blue
        ["USA", "CAN", "MEX", "GRL"],
    ),
    _month(
        "Agosto",
        "#FF4081",  # Hot Pink
        ["AUS", "PNG", "NZL", "FJI", "SLB", "VUT", "WSM", "KIR", "TON", "FSM", "PLW", "MHL",
         "NRU", "TUV"],
    ),
    _month(
        "Setembro",
        "#1DE9B6",  # Bright Teal
        ["CHE", "BEL", "LUX", "NLD", "DEU", "DNK", "POL", "CZE", "AUT", "LIE"],
    ),
    _month(
        "Outubro",
        "#FF9100",  # Bright Amber
        ["SVK", "HUN", "SVN", "HRV", "BIH", "MNE", "SRB", "ALB", "GRC", "MKD", "BGR", "ROU",
         "MDA", "UKR", "BLR", "LTU", "LVA", "EST", "RUS"],
    ),
    _month(
        "Novembro",
        "#651FFF",  # Vivid Indigo
        ["MAR", "DZA", "TUN", "ESH", "MRT", "SEN", "GMB", "GNB", "GIN", "SLE", "LBR", "CIV",
         "MLI", "BFA", "GHA", "TGO", "BEN", "NER", "NGA", "LBY", "TCD", "CMR", "CAF", "EGY",
         "SDN", "SSD", "ETH", "SOM", "ERI", "DJI", "CPV"],
    ),
    _month(
        "Dezembro",
        "#F50057",  # Vivid Rose
        ["TUR", "CYP", "LBN", "ISR", "PSE", "JOR", "SYR", "IRQ", "IRN", "GEO", "ARM", "AZE",
         "TKM", "UZB", "AFG", "TJK", "KGZ", "PAK", "SAU", "KWT", "BHR", "QAT", "ARE", "OMN",
         "YEM", "IND", "LKA", "MDV", "BGD"],
    ),
]


def get_month_by_country(iso3: str, palette: Optional[List[MonthConfig]] = None) -> Optional[MonthConfig]:
    """Month configuration a country belongs to, or None."""
    for month in palette if palette is not None else MONTHS:
        if iso3 in month.countries:
            return month
    return None


def get_country_month_map(palette: Optional[List[MonthConfig]] = None) -> Dict[str, str]:
    """iso3 -> month name for every assigned country."""
    return {
        iso: month.name
        for month in (palette if palette is not None else MONTHS)
        for iso in month.countries
    }


def legend_entries(palette: Optional[List[MonthConfig]] = None) -> List[Dict[str, Any]]:
    """
    Legend rows for the month palette.

    Returns:
        One dict per month with the month name, its full-color swatch and
        how many countries it covers
    """
    return [
        {
            "name": month.name,
            "color": month.tier_colors[4],
            "country_count": len(month.countries),
        }
        for month in (palette if palette is not None else MONTHS)
    ]
