import enum


class SubscriptionTier(str, enum.Enum):
    free = "free"
    educator = "educator"
    premium = "premium"


class CardType(str, enum.Enum):
    single_word = "single_word"
    category = "category"


class DifficultyLevel(str, enum.Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


class AgeGroup(str, enum.Enum):
    preschool = "preschool"
    elementary = "elementary"
    middle_school = "middle_school"


class StylePreference(str, enum.Enum):
    cartoon = "cartoon"
    realistic = "realistic"
    minimalist = "minimalist"


class SessionStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.completed, SessionStatus.failed)


class FlashCardStatus(str, enum.Enum):
    generating = "generating"
    preview = "preview"
    approved = "approved"
    downloaded = "downloaded"


class Theme(str, enum.Enum):
    light = "light"
    dark = "dark"
