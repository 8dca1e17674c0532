from __future__ import annotations

from collections import defaultdict
from logging import Logger
from typing import DefaultDict, Dict

COUNTERS = (
    "begun",
    "committed",
    "rolled_back",
    "commit_failed",
    "swept",
    "cleaned_up",
    "rejected",
)


class TransactionStatistics:
    """Running totals of how transactions were started and ended"""

    def __init__(self) -> None:
        self.reset()

    def reset(self):
        self._counter: DefaultDict[str, int] = defaultdict(int)

    def incr(self, key: str, amount: int = 1) -> None:
        if key not in COUNTERS:
            raise KeyError(f"Unknown counter {key}")
        self._counter[key] += amount

    def __getitem__(self, key: str) -> int:
        return self._counter.get(key, 0)

    def to_dict(self) -> Dict[str, int]:
        return {key: self[key] for key in COUNTERS}


def log_statistics_report(logger: Logger, statistics: TransactionStatistics):
    COLUMN_SIZE = 6
    values = statistics.to_dict()
    if not any(values.values()):
        logger.info("No transactions were handled")
        return
    width = max(COLUMN_SIZE, *map(len, values))
    headers = " | ".join(key.rjust(width) for key in values)
    row = " | ".join(str(value).rjust(width) for value in values.values())
    divider = "=" * len(headers)
    title = "TRANSACTION COUNTERS".center(len(divider))

    logger.info(
        f"Transaction Statistics Report\n\n{title}\n\n{headers}\n"
        f"{divider}\n{row}\n\n"
    )
