"""Analytics view identifiers and payload constants."""

from enum import Enum
from typing import List


class ViewType(str, Enum):
    """The five dashboard views computed per company."""
    SUMMARY = "summary"
    MONTHLY = "monthly"
    TRENDS = "trends"
    DISTRIBUTION = "distribution"
    HIGHEST = "highest"

    @classmethod
    def all(cls) -> List["ViewType"]:
        return list(cls)


# Bucket name for transactions without a department/action
UNSPECIFIED = "Unspecified"

# Window sizes
MONTHLY_WINDOW = 12
TRENDS_WINDOW_MONTHS = 6
HIGHEST_LIMIT = 10
