from enum import Enum


class MediaKindEnum(str, Enum):
    text = "text"
    image = "image"
    video = "video"


class StorageTierEnum(str, Enum):
    tierA = "tierA"
    tierB = "tierB"
    tierC = "tierC"


class ProviderOutcomeEnum(str, Enum):
    success = "success"
    timeout = "timeout"
    error = "error"


class ReservationStatusEnum(str, Enum):
    pending = "pending"
    committed = "committed"
    released = "released"


class PatternTypeEnum(str, Enum):
    structure = "structure"
    sentiment = "sentiment"
    length = "length"
    features = "features"
