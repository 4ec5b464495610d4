from __future__ import annotations

from calls.schemas import Profile

_GENDER_ALIASES = {
    "male": "male",
    "m": "male",
    "man": "male",
    "female": "female",
    "f": "female",
    "woman": "female",
}

_OPPOSITE = {"male": "female", "female": "male"}


def normalize_gender(gender: str | None) -> str:
    """Map loose gender inputs to 'male', 'female' or '' when unknown."""

    return _GENDER_ALIASES.get((gender or "").strip().lower(), "")


def normalize_language(language: str | None) -> str:
    return (language or "").strip().lower()


def missing_preferences(profile: Profile, *, language_wildcard: bool) -> list[str]:
    missing: list[str] = []
    if not normalize_gender(profile.gender):
        missing.append("gender")
    if not language_wildcard and not normalize_language(profile.language):
        missing.append("language")
    return missing


def is_compatible(a: Profile, b: Profile, *, language_wildcard: bool) -> bool:
    """Opposite gender is required; languages must agree when both are set.

    An unset language on either side matches anything under the wildcard
    policy and disqualifies the pair otherwise.
    """

    gender_a = normalize_gender(a.gender)
    if not gender_a or _OPPOSITE[gender_a] != normalize_gender(b.gender):
        return False

    lang_a = normalize_language(a.language)
    lang_b = normalize_language(b.language)
    if lang_a and lang_b:
        return lang_a == lang_b
    return language_wildcard
