"""
app.py — Propline Streamlit Entry Point

Sidebar: scheduler state, one cache card per domain, manual refresh.
Pages: cached predictions per domain, and a model explorer for ad-hoc series.
The client, cache and scheduler are built once per process (st.cache_resource)
and shared by every browser session.

Cards are rendered with st.html and inline styles on the same dark palette
as the Plotly charts.

Run: streamlit run app.py
"""

import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Path setup: allow 'from propline.xxx import' regardless of cwd
# ---------------------------------------------------------------------------
ROOT = Path(__file__).parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from propline.dashboard import AMBER, GREEN, GREY, RED, get_runtime, status_card  # noqa: E402

# ---------------------------------------------------------------------------
# Logging setup: write to logs/error.log
# ---------------------------------------------------------------------------
LOG_DIR = ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "error.log"),
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page config: must be first Streamlit call
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Propline",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded",
    menu_items={
        "Get Help": None,
        "Report a bug": None,
        "About": "Propline: player prop and match-total probabilities",
    },
)

runtime = get_runtime()

# ---------------------------------------------------------------------------
# Sidebar: scheduler status + per-domain cache cards
# ---------------------------------------------------------------------------
with st.sidebar:
    st.html(
        f"""
        <div style="
            padding: 12px 0 8px 0;
            border-bottom: 1px solid #2d3139;
            margin-bottom: 12px;
        ">
            <span style="
                font-size: 1.1rem;
                font-weight: 700;
                color: {AMBER};
                letter-spacing: 0.03em;
            ">📈 PROPLINE</span>
        </div>
        """
    )

    status = runtime.scheduler.get_status()
    if status["running"]:
        dot_color, label = GREEN, "LIVE"
    else:
        dot_color, label = GREY, "IDLE"
    started = status["started_at"]
    started_str = started.strftime("%H:%M:%S UTC") if started else "—"

    st.html(
        f"""
        <div style="
            background: #1a1d23;
            border: 1px solid #2d3139;
            border-radius: 6px;
            padding: 10px 12px;
            margin-bottom: 12px;
        ">
            <div style="display:flex; align-items:center; gap:6px; margin-bottom:6px;">
                <div style="
                    width:8px; height:8px; border-radius:50%;
                    background:{dot_color};
                    box-shadow: 0 0 6px {dot_color};
                "></div>
                <span style="
                    font-size:0.65rem; font-weight:600;
                    color:{dot_color}; letter-spacing:0.1em;
                ">{label}</span>
            </div>
            <div style="font-size:0.65rem; color:{GREY}; line-height:1.6;">
                <div>Refresh: every {status["interval_hours"]}h</div>
                <div>Started: {started_str}</div>
            </div>
        </div>
        """
    )

    for domain in runtime.cache.domains():
        orch = runtime.cache.get(domain)
        st.html(status_card(domain.upper(), orch.snapshot(), orch.last_error))

    if st.button("↺  Refresh Now", use_container_width=True, type="secondary"):
        started_map = runtime.scheduler.trigger_now()
        logger.info("Manual refresh requested from sidebar: %s", started_map)
        running = [d for d, ok in started_map.items() if not ok]
        if running:
            st.warning(f"Already refreshing: {', '.join(running)}")
        else:
            st.success("Refresh started")

    st.markdown("---")
    st.html(
        f'<div style="font-size:0.6rem; color:{RED if not runtime.client.api_key else GREY};">'
        f'{"BALLDONTLIE_API_KEY missing" if not runtime.client.api_key else "API key loaded"}'
        "</div>"
    )

# ---------------------------------------------------------------------------
# Multi-page navigation, programmatic (st.navigation, Streamlit 1.36+)
# ---------------------------------------------------------------------------
pages = [
    st.Page("pages/01_predictions.py",    title="Predictions",    icon="🎯", default=True),
    st.Page("pages/02_model_explorer.py", title="Model Explorer", icon="🧮"),
]

pg = st.navigation(pages)
pg.run()
