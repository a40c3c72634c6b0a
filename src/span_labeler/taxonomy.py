"""Closed set of taxonomy identifiers used as span roles.

Identifiers are either a parent category (``subject``) or a namespaced
attribute (``subject.wardrobe``). Older flat identifiers are accepted through
``LEGACY_ID_MAP`` and resolved to their namespaced form.
"""

from __future__ import annotations

from types import MappingProxyType

TAXONOMY_VERSION = "3.0.0"

# --- Categories ---

CATEGORY_ATTRIBUTES: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        "shot": ("shot.type",),
        "subject": (
            "subject.identity",
            "subject.appearance",
            "subject.wardrobe",
            "subject.emotion",
        ),
        "action": ("action.movement", "action.state", "action.gesture"),
        "environment": (
            "environment.location",
            "environment.weather",
            "environment.context",
        ),
        "lighting": (
            "lighting.source",
            "lighting.quality",
            "lighting.timeOfDay",
            "lighting.colorTemp",
        ),
        "camera": ("camera.movement", "camera.lens", "camera.angle", "camera.focus"),
        "style": ("style.aesthetic", "style.filmStock", "style.colorGrade"),
        "technical": (
            "technical.aspectRatio",
            "technical.frameRate",
            "technical.resolution",
            "technical.duration",
        ),
        "audio": ("audio.score", "audio.soundEffect", "audio.ambient"),
    }
)

PARENT_CATEGORIES: tuple[str, ...] = tuple(CATEGORY_ATTRIBUTES)

VALID_TAXONOMY_IDS: frozenset[str] = frozenset(
    (*PARENT_CATEGORIES, *(a for attrs in CATEGORY_ATTRIBUTES.values() for a in attrs))
)

# Categories exempt from the non-technical word limit
TECHNICAL_CATEGORIES: frozenset[str] = frozenset({"technical"})

# --- Legacy identifiers ---

LEGACY_ID_MAP: MappingProxyType[str, str] = MappingProxyType(
    {
        "identity": "subject.identity",
        "appearance": "subject.appearance",
        "wardrobe": "subject.wardrobe",
        "emotion": "subject.emotion",
        "subject.action": "action.movement",
        "location": "environment.location",
        "weather": "environment.weather",
        "context": "environment.context",
        "lighting_source": "lighting.source",
        "lighting_quality": "lighting.quality",
        "time_of_day": "lighting.timeOfDay",
        "timeOfDay": "lighting.timeOfDay",
        "color_temp": "lighting.colorTemp",
        "framing": "shot.type",
        "camera.framing": "shot.type",
        "camera_move": "camera.movement",
        "cameraMove": "camera.movement",
        "lens": "camera.lens",
        "angle": "camera.angle",
        "aperture": "camera.focus",
        "depth_of_field": "camera.focus",
        "aesthetic": "style.aesthetic",
        "film_stock": "style.filmStock",
        "color_grade": "style.colorGrade",
        "aspect_ratio": "technical.aspectRatio",
        "frame_rate": "technical.frameRate",
        "fps": "technical.frameRate",
        "resolution": "technical.resolution",
        "duration": "technical.duration",
        "score": "audio.score",
        "sound_effect": "audio.soundEffect",
        "sfx": "audio.soundEffect",
        "ambient": "audio.ambient",
    }
)


def resolve_taxonomy_id(value: str) -> str:
    """Map a legacy identifier to its namespaced form; others pass through."""
    return LEGACY_ID_MAP.get(value, value)


def is_valid_taxonomy_id(value: object) -> bool:
    """True for known identifiers, legacy aliases included."""
    return isinstance(value, str) and resolve_taxonomy_id(value) in VALID_TAXONOMY_IDS


def parent_category(value: object) -> str | None:
    """Return the known parent category of ``value``, or None.

    Works for identifiers outside the closed set as long as their prefix is a
    known category: ``subject.hairstyle`` resolves to ``subject``.
    """
    if not isinstance(value, str) or not value:
        return None
    parent = resolve_taxonomy_id(value).split(".", 1)[0]
    return parent if parent in CATEGORY_ATTRIBUTES else None
