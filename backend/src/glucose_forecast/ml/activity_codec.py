"""
Activity label encoding.

Codes match the LabelEncoder used when the forecasting model was trained.
Unknown labels share the "None" code.
"""
from typing import Dict, List

UNKNOWN_ACTIVITY = "None"

ACTIVITY_CODES: Dict[str, int] = {
    "None": 0,
    "Sleeping": 1,
    "Sitting": 2,
    "Standing": 3,
    "Walking": 4,
    "Running": 5,
    "Cycling": 6,
    "Exercise": 7,
    "Sports": 8,
    "Housework": 9,
    "Work": 10,
    "Driving": 11,
    "Eating": 12,
    "Cooking": 13,
    "Shopping": 14,
    "Other": 15,
}

ACTIVITY_LABELS: Dict[int, str] = {code: label for label, code in ACTIVITY_CODES.items()}


class ActivityCodec:
    """Bidirectional mapping between activity labels and integer codes."""

    unknown_code = ACTIVITY_CODES[UNKNOWN_ACTIVITY]

    def encode(self, activity: str) -> int:
        return ACTIVITY_CODES.get(activity, self.unknown_code)

    def decode(self, code: int) -> str:
        return ACTIVITY_LABELS.get(code, UNKNOWN_ACTIVITY)

    def is_supported(self, activity: str) -> bool:
        return activity in ACTIVITY_CODES

    @property
    def available_activities(self) -> List[str]:
        return list(ACTIVITY_CODES.keys())
