"""
IELTS Reading Band Tables

Percentage-to-band conversion for IELTS reading papers. Academic and
General Training papers use different thresholds; each table lists
(minimum percentage, band) from the highest band down.
"""

from typing import List, Optional, Tuple

ACADEMIC = "academic"
GENERAL = "general"

ACADEMIC_READING_BANDS: List[Tuple[float, float]] = [
    (98, 9.0),
    (91, 8.5),
    (85, 8.0),
    (77, 7.5),
    (69, 7.0),
    (63, 6.5),
    (55, 6.0),
    (47, 5.5),
    (39, 5.0),
    (32, 4.5),
    (23, 4.0),
    (16, 3.5),
    (8, 3.0),
    (0, 2.5),
]

GENERAL_READING_BANDS: List[Tuple[float, float]] = [
    (98, 9.0),
    (89, 8.5),
    (83, 8.0),
    (74, 7.5),
    (67, 7.0),
    (59, 6.5),
    (51, 6.0),
    (43, 5.5),
    (35, 5.0),
    (27, 4.5),
    (19, 4.0),
    (12, 3.5),
    (6, 3.0),
    (0, 2.5),
]


def band_table(variant: Optional[str] = None) -> List[Tuple[float, float]]:
    """Pick the table for a test variant; anything but general training is academic."""
    if variant and variant.lower() in (GENERAL, "general_training", "general training"):
        return GENERAL_READING_BANDS
    return ACADEMIC_READING_BANDS


def band_from_percentage(percentage: float, variant: Optional[str] = None) -> float:
    """
    Convert a reading percentage to an IELTS band.

    >>> band_from_percentage(70)
    7.0
    >>> band_from_percentage(70, "general")
    7.0
    >>> band_from_percentage(60, "general")
    6.5
    """
    for minimum, band in band_table(variant):
        if percentage >= minimum:
            return band
    return band_table(variant)[-1][1]
