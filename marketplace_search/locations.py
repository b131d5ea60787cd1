# marketplace_search/locations.py
"""City alias table and alias-aware location comparison."""
from typing import Iterable, Optional
from .utils import normalize_text

CITY_ALIASES = {
    "damascus": ["دمشق", "dimashq", "الشام", "sham"],
    "aleppo": ["حلب", "halab", "haleb"],
    "homs": ["حمص", "hims"],
    "latakia": ["اللاذقية", "lattakia", "ladhiqiyah"],
    "hama": ["حماه", "حماة", "hamah"],
    "tartus": ["طرطوس", "tartous"],
    "idlib": ["إدلب", "ادلب"],
    "deir ez-zor": ["دير الزور", "ديرالزور", "deir ezzor", "deir ez zor"],
    "raqqa": ["الرقة", "رقة"],
    "daraa": ["درعا", "دارا"],
    "quneitra": ["القنيطرة", "قنيطرة"],
    "sweida": ["السويداء", "سويداء", "suwayda"],
    "hasakah": ["الحسكة", "حسكة"],
}

_COUNTRY_SUFFIXES = (", syria", " syria", "، سوريا", " سوريا")

_ALIAS_TO_CANONICAL = {}
for _canonical, _aliases in CITY_ALIASES.items():
    for _name in [_canonical, *_aliases]:
        _ALIAS_TO_CANONICAL[normalize_text(_name)] = _canonical


def normalize_location(name) -> str:
    t = normalize_text(name)
    for suffix in _COUNTRY_SUFFIXES:
        suffix = normalize_text(suffix)
        if t.endswith(suffix) and len(t) > len(suffix):
            t = t[: -len(suffix)].strip(" ,،")
    return t


def canonical_city(name) -> Optional[str]:
    """Map any known spelling of a city to its canonical (english) key."""
    return _ALIAS_TO_CANONICAL.get(normalize_location(name))


def locations_match(a, b) -> bool:
    na, nb = normalize_location(a), normalize_location(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    ca, cb = canonical_city(na), canonical_city(nb)
    if ca is not None and ca == cb:
        return True
    # multi-word names only, so "damascus" never matches "rural damascus"
    shorter, longer = sorted((na, nb), key=len)
    return " " in shorter and shorter in longer


def any_location_matches(candidates: Iterable, requested) -> bool:
    return any(locations_match(c, requested) for c in candidates if c)
