"""
Carry user-set pinned/dismissed flags across regenerations.
Insights are matched on type plus their sorted, de-duplicated supporting ids.
"""

from typing import Iterable

from taxhelper.insights.types import Insight


def build_insight_key(insight: Insight) -> str:
    ids = sorted(set(insight.supporting_transaction_ids))
    return f"{insight.type.value}:{','.join(ids)}"


def merge_insight_state(next_insights: Iterable[Insight], previous_insights: Iterable[Insight]) -> list[Insight]:
    previous = {
        build_insight_key(insight): (insight.pinned, insight.dismissed)
        for insight in previous_insights
    }

    merged: list[Insight] = []
    for insight in next_insights:
        state = previous.get(build_insight_key(insight))
        if state is None:
            merged.append(insight)
            continue
        pinned, dismissed = state
        merged.append(insight.model_copy(update={"pinned": pinned, "dismissed": dismissed}))
    return merged
