"""
Display order: active before dismissed, pinned first, then by severity.
"""

from typing import Iterable

from taxhelper.insights.types import Insight


def sort_insights(insights: Iterable[Insight]) -> list[Insight]:
    # sorted() is stable, so ties keep their input order
    return sorted(
        insights,
        key=lambda i: (i.dismissed, not i.pinned, -i.severity_score),
    )
