"""
pages/01_predictions.py — Cached Predictions

Reads each domain's cache snapshot (never blocks on a refresh):
- READY: header metrics, probability chart, one table per fixture
- LOADING / EMPTY: info banner; an empty idle cache gets a background refresh

Design: dark terminal aesthetic, amber accent, no narrative.
"""

import sys
from pathlib import Path

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from propline.cache import CacheSnapshot
from propline.conflict_resolver import CONFIDENCE_FLOOR
from propline.dashboard import AMBER, PLOTLY_BASE, fixture_title, get_runtime, prediction_rows

DOMAIN_LABELS = {"nba": "NBA Player Props", "epl": "Premier League"}


def _build_probability_chart(snap: CacheSnapshot) -> go.Figure:
    """Top prediction probability per fixture, floor marked."""
    titles, probs, hovers = [], [], []
    for fixture in snap.data.fixtures:
        if not fixture.predictions:
            continue
        best = fixture.predictions[0]
        titles.append(fixture_title(fixture))
        probs.append(best.probability * 100)
        hovers.append(f"{best.subject_label} {best.side} {best.line} {best.stat_key}")

    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=probs,
        y=titles,
        orientation="h",
        marker_color=AMBER,
        customdata=hovers,
        hovertemplate="%{customdata}<br>%{x:.1f}%<extra></extra>",
    ))
    fig.add_vline(
        x=CONFIDENCE_FLOOR * 100,
        line_dash="dash",
        line_color="#6b7280",
        annotation_text=f"Floor {CONFIDENCE_FLOOR:.0%}",
        annotation_font_color="#9ca3af",
        annotation_font_size=10,
    )
    layout = dict(PLOTLY_BASE)
    layout["title"] = dict(text="Best pick per fixture", font=dict(size=12, color="#9ca3af"), x=0)
    layout["height"] = max(220, 32 * len(titles) + 80)
    layout["xaxis"] = dict(**PLOTLY_BASE["xaxis"], title="Probability (%)", range=[50, 70])
    layout["yaxis"] = dict(**PLOTLY_BASE["yaxis"], autorange="reversed")
    fig.update_layout(**layout)
    return fig


def _render_domain(domain: str) -> None:
    orch = runtime.cache.get(domain)
    snap = orch.snapshot()

    if snap.data is None:
        if snap.is_loading:
            st.info("Data is being loaded, please check back in a few seconds.")
        else:
            orch.start_refresh_in_background()
            st.info("Cache empty, refresh started.")
        if orch.last_error:
            st.error(f"Last refresh failed: {orch.last_error}")
        return

    data = snap.data
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Fixtures", data.item_count)
    c2.metric("Predictions", data.prediction_count)
    c3.metric("Band", f"{data.scope['minProb']:.0%}–{data.scope['maxProb']:.0%}")
    c4.metric("Updated", snap.last_updated.strftime("%H:%M UTC") if snap.last_updated else "—")
    if snap.is_loading:
        st.caption("Refreshing in the background, showing previous data.")
    if "week" in data.scope:
        st.caption(f"Season {data.scope['season']} · Gameweek {data.scope['week']}")
    else:
        st.caption(f"Season {data.scope['season']}")

    if data.prediction_count:
        st.plotly_chart(_build_probability_chart(snap), use_container_width=True)

    for fixture in data.fixtures:
        rows = prediction_rows(fixture)
        with st.expander(f"{fixture_title(fixture)}  ·  {len(rows)} picks", expanded=False):
            if not rows:
                st.caption("No predictions above the confidence floor.")
                continue
            st.dataframe(
                pd.DataFrame(rows),
                hide_index=True,
                use_container_width=True,
                column_config={
                    "Prob %": st.column_config.NumberColumn(format="%.1f"),
                    "Fair Odds": st.column_config.NumberColumn(format="%.3f"),
                },
            )


runtime = get_runtime()

st.html(
    f"""
    <div style="font-size:1.3rem; font-weight:700; color:{AMBER}; margin-bottom:4px;">
        Predictions
    </div>
    <div style="font-size:0.75rem; color:#6b7280; margin-bottom:12px;">
        Cached model picks, refreshed on a schedule. Probabilities are model
        estimates, not market prices.
    </div>
    """
)

tabs = st.tabs([DOMAIN_LABELS.get(d, d.upper()) for d in runtime.cache.domains()])
for tab, domain in zip(tabs, runtime.cache.domains()):
    with tab:
        _render_domain(domain)
