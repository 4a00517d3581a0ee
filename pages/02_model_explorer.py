"""
pages/02_model_explorer.py — Probability Model Explorer

Evaluate the prop model on a hand-entered series (newest first):
- blended mu, sigma (with fallback), season/recent averages
- p_over / p_under across the scan window, acceptance band shaded
- the predictions the line scanner would keep for this series

No live data required: pure prob_model / line_scanner.
"""

import sys
from pathlib import Path

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from propline.dashboard import AMBER, GREEN, PLOTLY_BASE, RED
from propline.line_scanner import (
    DEFAULT_MAX_PROB,
    DEFAULT_MIN_PROB,
    FOOTBALL_PLAYER_PROFILE,
    NBA_PROP_PROFILE,
    candidate_lines,
    scan_prop_lines,
)
from propline.prob_model import OVER, UNDER, compute_prop_probability
from propline.stat_series import RECENT_GAMES, series_from_values

PROFILES = {
    "NBA player prop": NBA_PROP_PROFILE,
    "Football player prop": FOOTBALL_PLAYER_PROFILE,
}
EXAMPLE_SERIES = "28, 31, 22, 25, 35, 27, 19, 30, 24, 26, 33, 21"


def _parse_series(text: str) -> list[float]:
    values = []
    for token in text.replace("\n", ",").split(","):
        token = token.strip()
        if not token:
            continue
        try:
            values.append(float(token))
        except ValueError:
            st.warning(f"Ignoring non-numeric value: {token!r}")
    return values


def _build_curve_chart(lines, p_over, p_under, min_prob, max_prob, mu) -> go.Figure:
    fig = go.Figure()
    fig.add_hrect(
        y0=min_prob * 100, y1=max_prob * 100,
        fillcolor=AMBER, opacity=0.12, line_width=0,
    )
    fig.add_trace(go.Scatter(
        x=lines, y=[p * 100 for p in p_over],
        mode="lines+markers", name="Over",
        line=dict(color=GREEN, width=2.5), marker=dict(size=6),
        hovertemplate="Line %{x}<br>Over: %{y:.1f}%<extra></extra>",
    ))
    fig.add_trace(go.Scatter(
        x=lines, y=[p * 100 for p in p_under],
        mode="lines+markers", name="Under",
        line=dict(color=RED, width=2.5), marker=dict(size=6),
        hovertemplate="Line %{x}<br>Under: %{y:.1f}%<extra></extra>",
    ))
    fig.add_vline(
        x=mu,
        line_dash="dot",
        line_color="#d1d5db",
        annotation_text=f"μ {mu:.2f}",
        annotation_font_color="#d1d5db",
        annotation_font_size=10,
    )
    layout = dict(PLOTLY_BASE)
    layout["title"] = dict(text="Side probability by line", font=dict(size=12, color="#9ca3af"), x=0)
    layout["height"] = 340
    layout["xaxis"] = dict(**PLOTLY_BASE["xaxis"], title="Line")
    layout["yaxis"] = dict(**PLOTLY_BASE["yaxis"], title="Probability (%)", range=[0, 100])
    layout["legend"] = dict(bgcolor="rgba(0,0,0,0)", font=dict(size=10, color="#9ca3af"), x=0.01, y=0.99)
    fig.update_layout(**layout)
    return fig


st.html(
    f"""
    <div style="font-size:1.3rem; font-weight:700; color:{AMBER}; margin-bottom:4px;">
        Model Explorer
    </div>
    <div style="font-size:0.75rem; color:#6b7280; margin-bottom:12px;">
        Blended normal model with ±0.5 continuity correction.
    </div>
    """
)

col_in, col_cfg = st.columns([2, 1])
with col_in:
    raw = st.text_area("Season values (newest first)", value=EXAMPLE_SERIES, height=100)
with col_cfg:
    profile_name = st.selectbox("Profile", list(PROFILES))
    recent_games = st.number_input("Recent games", min_value=1, max_value=20, value=RECENT_GAMES)
    band = st.slider(
        "Acceptance band", min_value=0.50, max_value=0.80,
        value=(DEFAULT_MIN_PROB, DEFAULT_MAX_PROB), step=0.01,
    )

profile = PROFILES[profile_name]
series = series_from_values(_parse_series(raw), int(recent_games))

if not series.season:
    st.info("Enter at least one value.")
    st.stop()

base = compute_prop_probability(series.season, series.recent, 0.0, OVER, profile.weight_recent)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Season avg", f"{base.season_avg:.2f}")
c2.metric("Recent avg", f"{base.recent_avg:.2f}")
c3.metric("μ (blended)", f"{base.mu:.2f}")
c4.metric("σ", f"{base.sigma:.2f}")

lines = candidate_lines(base.mu, profile.half_width)
p_over = [compute_prop_probability(series.season, series.recent, x, OVER, profile.weight_recent).p
          for x in lines]
p_under = [compute_prop_probability(series.season, series.recent, x, UNDER, profile.weight_recent).p
           for x in lines]
st.plotly_chart(
    _build_curve_chart(lines, p_over, p_under, band[0], band[1], base.mu),
    use_container_width=True,
)

kept = scan_prop_lines(
    series,
    subject_id=0,
    subject_label="Explorer",
    stat_key="custom",
    min_prob=band[0],
    max_prob=band[1],
    profile=profile,
)
st.markdown(f"**Scanner output** (min {profile.min_samples} games, max {profile.cap} kept)")
if not series.has_min_samples(profile.min_samples):
    st.caption(f"Only {len(series)} values, below the {profile.min_samples}-game minimum, nothing kept.")
elif not kept:
    st.caption("No line falls inside the band.")
else:
    st.dataframe(
        pd.DataFrame([
            {
                "Side": p.side.upper(),
                "Line": p.line,
                "Prob %": round(p.probability * 100, 1),
                "Fair Odds": round(p.fair_odds, 3),
            }
            for p in kept
        ]),
        hide_index=True,
        use_container_width=True,
    )
