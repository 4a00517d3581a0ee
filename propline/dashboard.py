"""
propline/dashboard.py — shared Streamlit helpers

One Runtime per Streamlit process (st.cache_resource survives reruns and is
shared by every session), plus the dark Plotly layout and card snippets the
pages reuse.

Design: dark terminal aesthetic, #0e1117 bg, amber accent (#f59e0b).
"""

import logging
from typing import Optional

import streamlit as st

from propline.cache import CacheSnapshot, FixturePredictions
from propline.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

AMBER = "#f59e0b"
GREEN = "#22c55e"
RED = "#ef4444"
GREY = "#6b7280"

PLOTLY_BASE = dict(
    paper_bgcolor="#0e1117",
    plot_bgcolor="#13161d",
    font=dict(color="#d1d5db", size=11, family="monospace"),
    margin=dict(l=45, r=20, t=35, b=40),
    xaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    yaxis=dict(gridcolor="#2d3139", linecolor="#2d3139"),
    hoverlabel=dict(bgcolor="#1a1d23", bordercolor="#2d3139", font_color="#f3f4f6"),
)


@st.cache_resource(show_spinner=False)
def get_runtime() -> Runtime:
    """Build the process-wide runtime and start its scheduler once."""
    runtime = build_runtime()
    try:
        runtime.scheduler.start()
    except Exception as exc:  # noqa: BLE001
        logger.error("Scheduler init failed: %s", exc)
    return runtime


def fixture_title(fixture: FixturePredictions) -> str:
    """
    >>> f = FixturePredictions(1, {"home_team": {"full_name": "Boston Celtics"},
    ...                            "visitor_team": {"full_name": "New York Knicks"}}, ())
    >>> fixture_title(f)
    'New York Knicks @ Boston Celtics'
    """
    info = fixture.fixture
    home = info.get("home_team") or {}
    if "visitor_team" in info:
        away = info.get("visitor_team") or {}
        return f"{away.get('full_name') or away.get('name', '?')} @ {home.get('full_name') or home.get('name', '?')}"
    away = info.get("away_team") or {}
    return f"{home.get('name', '?')} vs {away.get('name', '?')}"


def prediction_rows(fixture: FixturePredictions) -> list[dict]:
    """Table rows for one fixture, in presentation units."""
    rows = []
    for pred in fixture.predictions:
        d = pred.to_dict()
        rows.append({
            "Subject": d["subjectLabel"],
            "Type": d["type"],
            "Stat": d["statKey"],
            "Side": d["side"].upper(),
            "Line": d["line"],
            "Prob %": d["probability"],
            "Fair Odds": d["fairOdds"],
            "Season Avg": d["seasonAvg"],
            "Recent Avg": d["recentAvg"],
            "Sigma": d["sigma"],
        })
    return rows


def status_card(title: str, snap: CacheSnapshot, error: Optional[str] = None) -> str:
    """Compact sidebar card for one domain's cache state."""
    if snap.is_loading:
        color, label = AMBER, "LOADING"
    elif snap.has_data:
        color, label = GREEN, "READY"
    else:
        color, label = GREY, "EMPTY"
    updated = snap.last_updated.strftime("%H:%M:%S UTC") if snap.last_updated else "—"
    err_html = f'<div style="color:{RED};">⚠ {error[:80]}</div>' if error else ""
    return f"""
        <div style="
            background:#1a1d23; border:1px solid #2d3139;
            border-radius:6px; padding:8px 10px; margin-bottom:8px;
        ">
            <div style="display:flex; align-items:center; justify-content:space-between; margin-bottom:4px;">
                <span style="font-size:0.6rem; font-weight:700; color:#9ca3af; letter-spacing:0.08em;">{title}</span>
                <span style="font-size:0.6rem; font-weight:700; color:{color};">{label}</span>
            </div>
            <div style="font-size:0.6rem; color:{GREY}; line-height:1.7;">
                <div>Fixtures: <span style="color:#d1d5db;">{snap.item_count}</span></div>
                <div>Updated: <span style="color:#d1d5db;">{updated}</span></div>
                {err_html}
            </div>
        </div>
    """
