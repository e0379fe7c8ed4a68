"""Hypothesis strategies for property testing.

Provides reusable composite strategies for generating pushed events and
notification timelines.
"""

from hypothesis import strategies as st

from src.realtime.models import SignalNotification, TrackedStockStats

STOCK_CODES = ["FPT", "VNM", "HPG", "MWG", "VCB", "SSI", "TCB"]


@st.composite
def signal_event(draw):
    """Generate a valid SignalNotification."""
    return SignalNotification(
        code=draw(st.sampled_from(STOCK_CODES)),
        signal_type=draw(st.sampled_from(["BUY", "SELL"])),
        score=draw(st.integers(min_value=0, max_value=10)),
        reason=draw(st.text(max_size=40)),
    )


@st.composite
def stats_event(draw):
    """Generate TrackedStockStats for one of a small set of codes."""
    return TrackedStockStats(
        code=draw(st.sampled_from(STOCK_CODES)),
        lowest_price_buy=draw(st.floats(min_value=0, max_value=1e6, allow_nan=False)),
    )


@st.composite
def offer_timeline(draw, max_size=30):
    """Generate (key, time) pairs with non-decreasing times in seconds."""
    gaps = draw(
        st.lists(st.floats(min_value=0, max_value=400, allow_nan=False), max_size=max_size)
    )
    keys = draw(st.lists(st.sampled_from(["1", "2", "3"]), min_size=len(gaps), max_size=len(gaps)))
    timeline = []
    now = 0.0
    for key, gap in zip(keys, gaps, strict=True):
        now += gap
        timeline.append((key, now))
    return timeline
