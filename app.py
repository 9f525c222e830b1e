"""CitySim — Main Streamlit application.

Tune the four city knobs, optimize them for a target metric, and compare saved runs.
"""

import plotly.graph_objects as go
import streamlit as st

from citysim.agents.interpreter import interpret_results
from citysim.core.comparator import compare_all_simulations
from citysim.core.evaluation import build_run
from citysim.core.history_store import HistoryStore, StorageError
from citysim.core.optimizer import OptimizationConfig, optimize_parameters
from citysim.core.orchestrator import DATA_DIR
from citysim.core.simulation_spec import RESULT_METRICS, TARGET_METRICS, SimulationParameters

st.set_page_config(
    page_title="CitySim",
    page_icon="🏙️",
    layout="wide",
)

# ---------------------------------------------------------------------------
# Styling
# ---------------------------------------------------------------------------
st.markdown("""
<style>
    .main .block-container { max-width: 1100px; padding-top: 2rem; }
    .stMetric { background: #f8f9fa; border-radius: 8px; padding: 12px; }
</style>
""", unsafe_allow_html=True)

st.title("CitySim")
st.markdown("**Explore, optimize and compare smart city simulations**")
st.divider()

store = HistoryStore(DATA_DIR)

for key in ("optimization", "comparison", "interpretation"):
    if key not in st.session_state:
        st.session_state[key] = None

# ---------------------------------------------------------------------------
# Sidebar — Parameters
# ---------------------------------------------------------------------------
with st.sidebar:
    st.header("City Parameters")
    project_id = st.text_input("Project", value="default")
    run_name = st.text_input("Run name", value="Scenario")
    location = st.text_input("Location", value="")
    knobs = {}
    for name, label in [
        ("roads", "Road Infrastructure"),
        ("population", "Population Density"),
        ("housing", "Housing Development"),
        ("public_transport", "Public Transportation"),
    ]:
        knobs[name] = st.slider(label, min_value=0, max_value=100, value=50, step=5)

    st.divider()
    st.header("Optimizer")
    target = st.selectbox("Target metric", TARGET_METRICS, index=len(TARGET_METRICS) - 1)
    iterations = st.number_input("Iterations", min_value=1, max_value=500, value=50)
    population_size = st.number_input("Population size", min_value=2, max_value=200, value=20)
    save_run = st.button("Save Run", use_container_width=True)
    optimize = st.button("Optimize", type="primary", use_container_width=True)
    interpret = st.button("Interpret Results", use_container_width=True)

run = build_run(run_name, SimulationParameters(**knobs), project_id=project_id)


def _bar_chart(series: dict[str, list[float]]) -> go.Figure:
    fig = go.Figure()
    for label, values in series.items():
        fig.add_trace(go.Bar(x=list(RESULT_METRICS), y=values, name=label))
    fig.update_layout(
        barmode="group",
        yaxis=dict(range=[0, 100], title="Score"),
        legend=dict(orientation="h", y=1.12),
        margin=dict(t=40, b=40),
        height=420,
    )
    return fig


# ---------------------------------------------------------------------------
# Current results
# ---------------------------------------------------------------------------
st.subheader("Simulated Results")
cols = st.columns(len(RESULT_METRICS))
for col, metric in zip(cols, RESULT_METRICS):
    col.metric(metric.replace("_", " ").title(), f"{getattr(run.results, metric):.1f}")

if save_run:
    try:
        saved = store.save_run(run)
        st.success(f"Saved run {saved.id}")
    except StorageError as e:
        st.error(f"Could not save run: {e}")

if optimize:
    config = OptimizationConfig(iterations=int(iterations), population_size=int(population_size))
    with st.spinner("Running genetic search..."):
        st.session_state.optimization = optimize_parameters(run, target, config)

if interpret:
    with st.spinner("Asking the model for an interpretation..."):
        try:
            st.session_state.interpretation = interpret_results(run, location=location)
        except Exception as e:
            st.error(f"Interpretation failed: {e}")

interpretation = st.session_state.interpretation
if interpretation is not None:
    st.divider()
    st.subheader("Interpretation")
    st.write(interpretation.summary)
    for heading, items in (
        ("Insights", interpretation.insights),
        ("Improvements", interpretation.improvements),
        ("Comparisons", interpretation.comparisons),
    ):
        st.markdown(f"#### {heading}")
        for item in items:
            st.markdown(f"- {item}")

# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------
result = st.session_state.optimization
if result is not None:
    st.divider()
    st.subheader(result.name)
    c1, c2, c3 = st.columns(3)
    c1.metric("Improvement", f"{result.improvement_percentage:.1f}%")
    c2.metric("Confidence", f"{result.confidence_score:.2f}")
    c3.metric("Time", f"{result.metadata.execution_time_ms:.0f} ms")
    st.plotly_chart(
        _bar_chart({
            "Current": [getattr(run.results, m) for m in RESULT_METRICS],
            "Optimized": [getattr(result.predicted_results, m) for m in RESULT_METRICS],
        }),
        use_container_width=True,
    )
    st.json(result.optimal_parameters.model_dump(exclude={"extras"}))

# ---------------------------------------------------------------------------
# Comparison of saved runs
# ---------------------------------------------------------------------------
st.divider()
st.subheader("Saved Runs")
try:
    saved_runs = store.list_runs(project_id)
except StorageError as e:
    saved_runs = []
    st.error(f"Could not load saved runs: {e}")

if len(saved_runs) < 2:
    st.info("Save at least two runs in this project to compare them.")
elif st.button("Compare All Runs"):
    st.session_state.comparison = compare_all_simulations(saved_runs)

comparison = st.session_state.comparison
if comparison is not None:
    names = {r.id: r.name for r in saved_runs}
    series = {f"{names.get(comparison.baseline_run_id, 'Baseline')} (baseline)": [
        comparison.metrics[m].baseline_value for m in RESULT_METRICS
    ]}
    for i, run_id in enumerate(comparison.compared_run_ids):
        series[names.get(run_id, run_id)] = [comparison.metrics[m].compared_values[i] for m in RESULT_METRICS]
    st.plotly_chart(_bar_chart(series), use_container_width=True)

    st.markdown("#### Key Findings")
    for finding in comparison.summary.key_findings:
        st.markdown(finding if finding.startswith("- ") else f"- {finding}")
    st.markdown("#### Recommendations")
    for rec in comparison.summary.recommendations:
        st.markdown(f"- {rec}")
