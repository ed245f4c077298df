"""Moderation categories, their sensitivity classes and user-facing names."""

from enum import Enum
from typing import Iterable, Optional


class ModerationCategory(str, Enum):
    HATE = "hate"
    HATE_THREATENING = "hate/threatening"
    HARASSMENT = "harassment"
    HARASSMENT_THREATENING = "harassment/threatening"
    SELF_HARM = "self-harm"
    SELF_HARM_INTENT = "self-harm/intent"
    SELF_HARM_INSTRUCTIONS = "self-harm/instructions"
    SEXUAL = "sexual"
    SEXUAL_MINORS = "sexual/minors"
    VIOLENCE = "violence"
    VIOLENCE_GRAPHIC = "violence/graphic"

    @property
    def field_name(self) -> str:
        """Attribute name of this category on CategoryFlags / CategoryScores."""
        return self.name.lower()


# Synthetic category reported when the classifier could not be consulted
ERROR_CATEGORY = "error"

DEFAULT_HIGH_SENSITIVITY_CATEGORIES = frozenset({
    ModerationCategory.HATE,
    ModerationCategory.HATE_THREATENING,
    ModerationCategory.HARASSMENT,
    ModerationCategory.HARASSMENT_THREATENING,
})

CATEGORY_DISPLAY_NAMES = {
    "hate": "Hate Speech",
    "hate/threatening": "Threatening Hate Speech",
    "harassment": "Harassment",
    "harassment/threatening": "Threatening Harassment",
    "self-harm": "Self-Harm",
    "self-harm/intent": "Self-Harm Intent",
    "self-harm/instructions": "Self-Harm Instructions",
    "sexual": "Sexual Content",
    "sexual/minors": "Sexual Content Involving Minors",
    "violence": "Violence",
    "violence/graphic": "Graphic Violence",
}

PASSED_MESSAGE = "Content passed moderation checks."
GENERIC_BLOCK_MESSAGE = "Content flagged by moderation system."


def parse_categories(names: Iterable[str]) -> frozenset:
    """Turn configured category names into ModerationCategory members.

    Raises ValueError on a name that is not one of the known categories.
    """
    return frozenset(ModerationCategory(name) for name in names)


def category_display_name(category: Optional[str]) -> str:
    """Human-readable name for a category key; unknown keys pass through verbatim."""
    if category is None:
        return ""
    key = category.value if isinstance(category, ModerationCategory) else category
    return CATEGORY_DISPLAY_NAMES.get(key, key)


def format_feedback(flagged_categories: Iterable[str], is_allowed: bool) -> str:
    """Build the message shown to the author after moderation."""
    if is_allowed:
        return PASSED_MESSAGE

    names = [category_display_name(category) for category in flagged_categories]
    if not names:
        return GENERIC_BLOCK_MESSAGE

    return f"Content flagged for: {', '.join(names)}. Please revise your post."
