"""固定查找表：状况类型、服务状态、处置类型、更换原因"""

# 状况评分（1~5）→ 状况类型，按下限从高到低匹配
CONDITION_TYPES: list[tuple[float, str]] = [
    (4.8, "Excellent"),
    (4.0, "Good"),
    (3.0, "Adequate"),
    (2.0, "Marginal"),
    (1.0, "Poor"),
]
UNKNOWN_CONDITION = "Unknown"

MAX_CONDITION_RATING = 5.0
MIN_CONDITION_RATING = 1.0

# 服务状态代码
SERVICE_STATUS_TYPES: dict[str, str] = {
    "I": "In Service",
    "O": "Out of Service",
    "S": "Spare",
    "D": "Disposed",
    "U": "Unknown",
}
SERVICE_STATUS_DISPOSED = "D"
SERVICE_STATUS_UNKNOWN = "U"
SERVICE_STATUS_IN_SERVICE = "I"

DISPOSITION_TYPES: tuple[str, ...] = (
    "Public Sale",
    "Transferred",
    "Trade-In",
    "Scrapped",
    "Stolen/Destroyed",
)

REPLACEMENT_REASON_TYPES: tuple[str, ...] = (
    "Reached Useful Life",
    "Damaged Beyond Repair",
    "Service Expansion",
    "Other",
)


def condition_type_from_rating(rating: float | None) -> str:
    if rating is None:
        return UNKNOWN_CONDITION
    for lower_bound, name in CONDITION_TYPES:
        if rating >= lower_bound:
            return name
    return UNKNOWN_CONDITION
