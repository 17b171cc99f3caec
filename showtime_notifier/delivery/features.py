"""Display labels for screening feature keys as scraped from the cinema."""

from typing import Dict, Iterable, List

FEATURE_LABELS: Dict[str, Dict[str, str]] = {
    "2d": {"en-US": "2D", "de": "2D"},
    "3d": {"en-US": "3D", "de": "3D"},
    "atmos": {"en-US": "Dolby Atmos Sound", "de": "Dolby Atmos Sound"},
    "mx4d": {"en-US": "MX4D", "de": "MX4D"},
    "vorpremiere": {"en-US": "Prepremiere", "de": "Vorpremiere"},
    "pricelevel_n96": {"en-US": "Last chance", "de": "Letzte Chance"},
    "pricelevel_n101": {"en-US": "Premiere 2D", "de": "Premiere 2D"},
    "pricelevel_n103": {"en-US": "Premiere 2D Kids", "de": "Premiere 2D Kinder"},
    "englisch": {"en-US": "English", "de": "Englisch"},
    "language_2": {"en-US": "English", "de": "Englisch"},
    "language_6": {
        "en-US": "Japanese (German Subtitles)",
        "de": "Japanisch (deutsche Untertitel)",
    },
    "_pm_preview": {"en-US": "Preview", "de": "Vorschau"},
    "anime night": {"en-US": "Anime Night", "de": "Anime Night"},
    "anime_night": {"en-US": "Anime Night", "de": "Anime Night"},
    "kino anders": {"en-US": "Theatre Differently", "de": "Kino Anders"},
    "kino_anders": {"en-US": "Theatre Differently", "de": "Kino Anders"},
    "filmfrühstück": {"en-US": "Movie Breakfast", "de": "Filmfrühstück"},
    "2filmfrühstückd": {"en-US": "Movie Breakfast", "de": "Filmfrühstück"},
    "kultur": {"en-US": "Culture", "de": "Kultur"},
}


def feature_label(key: str, locale: str) -> str:
    """Localised label of a feature key; unknown keys are shown as-is."""
    labels = FEATURE_LABELS.get(key.strip().lower())
    if not labels:
        return key
    return labels.get(locale) or labels.get("en-US") or key


def feature_labels(keys: Iterable[str], locale: str) -> List[str]:
    """Labels for several keys, de-duplicated in first-seen order."""
    seen: List[str] = []
    for key in keys:
        label = feature_label(key, locale)
        if label not in seen:
            seen.append(label)
    return seen
