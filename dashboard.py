"""
Learning Insights Dashboard

Interactive Streamlit dashboard over students' digital-learning activity.

Features:
- Sample dataset on first load; replace it by uploading a CSV/XLSX export
  or pasting spreadsheet rows
- School/subject filters that survive dataset replacement
- KPIs, per-school improvement, usage vs improvement scatter, factor
  correlations and a follow-up priority list

Run with: streamlit run dashboard.py
"""

import zipfile

import streamlit as st
import plotly.express as px
import plotly.graph_objects as go
import pandas as pd
from typing import List, Optional, Sequence

from analytics import (
    BarPoint,
    FilterState,
    Provenance,
    ScatterPoint,
    StudentRecord,
    Tag,
    TierPoint,
    correlation_matrix,
    filter_options,
    priority_list,
    project,
    task_completion_tiers,
)
from config import (
    ALL,
    LOW_USAGE_MINUTES,
    HIGH_USAGE_MINUTES,
    TAG_COLORS,
    TAG_LABELS,
    TAG_PRIORITY,
)
from load_data import load_sample_dataset, parse_pasted_text, read_raw_rows, replace_dataset

CUSTOM_CSS = """
<style>
    .provenance-badge {
        padding: 4px 12px;
        border-radius: 20px;
        font-size: 0.85em;
        font-weight: 500;
        color: white;
    }
    .tag-legend {
        color: #6c757d;
        font-size: 0.9em;
    }
</style>
"""

PROVENANCE_COLORS = {
    Provenance.SAMPLE.value: "#6c757d",    # Grey
    Provenance.UPLOADED.value: "#1976d2",  # Blue
}


# ==================== DATA LOADING ====================

@st.cache_data
def get_sample_dataset():
    """Build the sample dataset once per session (with caching for performance)."""
    return load_sample_dataset()


def init_session_state():
    """Seed the active dataset and filter selection on first run."""
    if "dataset" not in st.session_state:
        st.session_state.dataset = get_sample_dataset()
        st.session_state.last_upload_key = None
    if "filter_school" not in st.session_state:
        st.session_state.filter_school = ALL
        st.session_state.filter_subject = ALL


def apply_new_rows(raw_rows: list) -> None:
    """Swap in a dataset built from raw_rows, or explain why the old one stays."""
    dataset, message = replace_dataset(st.session_state.dataset, raw_rows, Provenance.UPLOADED)

    if message:
        st.sidebar.error(f"Dataset unchanged. {message}")
        return

    st.session_state.dataset = dataset
    if dataset.dropped_rows:
        st.sidebar.warning(f"Skipped {dataset.dropped_rows} rows without a pre-score or post-score.")
    st.sidebar.success(f"Loaded {len(dataset)} students.")


# ==================== HELPER FUNCTIONS ====================

def upload_key(uploaded) -> Optional[tuple]:
    """Identity of the file currently held by the uploader, None when empty."""
    if uploaded is None:
        return None
    return (getattr(uploaded, "file_id", None), uploaded.name, uploaded.size)


def is_new_upload(key: Optional[tuple], last_key: Optional[tuple]) -> bool:
    """
    True only when the uploader holds a file that has not been loaded yet.

    The uploader keeps its file across reruns, so filter changes, pasting
    and resetting to sample data must not load it again.
    """
    return key is not None and key != last_key


def with_selection(options: List[str], current: str) -> List[str]:
    """Keep a stale selection selectable after the dataset changes."""
    if current in options:
        return options
    return options + [current]


def build_priority_table(records: Sequence[StudentRecord], limit: Optional[int] = None) -> pd.DataFrame:
    """Follow-up list as a display table."""
    rows = []
    for r in priority_list(records, limit):
        rows.append({
            'Student': r.display_name,
            'School': r.school,
            'Subject': r.subject,
            'Pre': r.pre_score,
            'Post': r.post_score,
            'Improvement': f"{r.improvement:+.1f}",
            'Usage (min)': r.usage_minutes,
            'Tasks': r.tasks_completed,
            'Status': TAG_LABELS[r.tag.value],
        })

    if not rows:
        return pd.DataFrame(columns=['Student', 'School', 'Subject', 'Pre', 'Post',
                                     'Improvement', 'Usage (min)', 'Tasks', 'Status'])
    return pd.DataFrame(rows)


# ==================== CHART FUNCTIONS ====================

def create_school_bar_chart(bar_series: Sequence[BarPoint]) -> go.Figure:
    """Create horizontal bar chart of average improvement per school."""
    schools = [p.school for p in bar_series]
    averages = [p.avg_improvement for p in bar_series]
    colors = ["#28a745" if a > 0 else "#dc3545" for a in averages]

    fig = go.Figure(go.Bar(
        x=averages,
        y=schools,
        orientation='h',
        marker_color=colors,
        text=[f"{a:+.1f}" for a in averages],
        textposition='outside'
    ))

    fig.update_layout(
        title="Average Improvement by School",
        xaxis_title="Post - Pre (points)",
        yaxis_title="",
        height=max(300, len(schools) * 45)
    )

    return fig


def create_usage_scatter(scatter_series: Sequence[ScatterPoint]) -> go.Figure:
    """Create usage vs improvement scatter, one trace per tag."""
    fig = go.Figure()

    for tag_value in TAG_PRIORITY:
        points = [p for p in scatter_series if p.tag == Tag(tag_value)]
        if not points:
            continue

        fig.add_trace(go.Scatter(
            x=[p.x for p in points],
            y=[p.y for p in points],
            mode='markers',
            name=TAG_LABELS[tag_value],
            marker=dict(color=TAG_COLORS[tag_value], size=9, opacity=0.8),
            text=[f"{p.label} ({p.school})" for p in points],
            hovertemplate='%{text}<br>%{x} min, %{y:+.1f} pts<extra></extra>'
        ))

    fig.add_vline(x=LOW_USAGE_MINUTES, line_dash="dot", line_color="#1976d2")
    fig.add_vline(x=HIGH_USAGE_MINUTES, line_dash="dot", line_color="#f57c00")
    fig.add_hline(y=0, line_color="#adb5bd")

    fig.update_layout(
        title="Time on Task vs Improvement",
        xaxis_title="Usage (minutes)",
        yaxis_title="Improvement (points)",
        height=450
    )

    return fig


def create_correlation_heatmap(matrix: pd.DataFrame) -> go.Figure:
    """Create heatmap of pairwise factor correlations."""
    fig = px.imshow(
        matrix,
        x=list(matrix.columns),
        y=list(matrix.index),
        color_continuous_scale=["#dc3545", "#f8f9fa", "#1976d2"],
        zmin=-1,
        zmax=1,
        text_auto='.2f',
        aspect='auto'
    )

    fig.update_layout(
        title="Factor Correlations (Pearson r)",
        height=420
    )

    return fig


def create_task_tier_chart(tiers: Sequence[TierPoint]) -> go.Figure:
    """Create bar chart of average improvement per task-completion tier."""
    fig = go.Figure(go.Bar(
        x=[t.tier for t in tiers],
        y=[t.avg_improvement for t in tiers],
        marker_color=["#94a3b8", "#0ea5e9", "#2563eb"][:len(tiers)],
        text=[f"{t.avg_improvement:+.1f} (n={t.count})" for t in tiers],
        textposition='outside'
    ))

    fig.update_layout(
        title="Task Completion vs Improvement",
        xaxis_title="",
        yaxis_title="Average improvement (points)",
        height=380
    )

    return fig


# ==================== MAIN DASHBOARD ====================

def render_sidebar():
    """Upload controls and filters. Returns the active FilterState."""
    st.sidebar.title("Data")

    uploaded = st.sidebar.file_uploader("Upload export", type=["csv", "tsv", "xlsx"])
    key = upload_key(uploaded)
    if is_new_upload(key, st.session_state.last_upload_key):
        st.session_state.last_upload_key = key
        try:
            apply_new_rows(read_raw_rows(uploaded, filename=uploaded.name))
        except (ValueError, zipfile.BadZipFile) as e:
            st.sidebar.error(f"Could not read {uploaded.name}: {e}")
    elif key is None:
        st.session_state.last_upload_key = None

    with st.sidebar.expander("Paste spreadsheet rows"):
        pasted = st.text_area("Header row + data rows", height=150)
        if st.button("Analyze pasted data", use_container_width=True):
            try:
                apply_new_rows(parse_pasted_text(pasted))
            except ValueError as e:
                st.sidebar.error(f"Could not read pasted data: {e}")

    if st.sidebar.button("Reset to sample data"):
        st.session_state.dataset = get_sample_dataset()

    st.sidebar.markdown("---")
    st.sidebar.title("Filters")

    schools, subjects = filter_options(st.session_state.dataset)
    schools = with_selection(schools, st.session_state.filter_school)
    subjects = with_selection(subjects, st.session_state.filter_subject)

    st.session_state.filter_school = st.sidebar.selectbox(
        "School", schools, index=schools.index(st.session_state.filter_school)
    )
    st.session_state.filter_subject = st.sidebar.selectbox(
        "Subject", subjects, index=subjects.index(st.session_state.filter_subject)
    )

    return FilterState(
        school=st.session_state.filter_school,
        subject=st.session_state.filter_subject
    )


def main():
    st.set_page_config(
        page_title="Learning Insights Dashboard",
        page_icon="📊",
        layout="wide",
        initial_sidebar_state="expanded"
    )
    st.markdown(CUSTOM_CSS, unsafe_allow_html=True)

    init_session_state()
    filter_state = render_sidebar()

    dataset = st.session_state.dataset
    view = project(dataset, filter_state)
    kpi = view.kpi

    # Header with provenance indicator
    col_title, col_badge = st.columns([3, 1])
    with col_title:
        st.title("Learning Insights Dashboard")
    with col_badge:
        color = PROVENANCE_COLORS[dataset.provenance.value]
        label = "Sample data" if dataset.provenance == Provenance.SAMPLE else "Uploaded data"
        st.markdown(
            f"<div style='text-align: right; padding-top: 20px;'>"
            f"<span class='provenance-badge' style='background-color: {color};'>{label}</span>"
            f"</div>",
            unsafe_allow_html=True
        )

    tab_overview, tab_students, tab_analysis = st.tabs(["Overview", "Students", "Analysis"])

    # ==================== TAB 1: OVERVIEW ====================
    with tab_overview:
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("Students", kpi.total_students)
        with col2:
            st.metric("Avg Improvement", f"{kpi.avg_improvement:+.1f}")
        with col3:
            st.metric("Needs Attention", kpi.needs_attention_count)
            st.caption(f"Ineffective learning: {kpi.ineffective_learning_count}")
        with col4:
            st.metric("High Potential", kpi.high_potential_count)

        if kpi.total_students == 0:
            st.warning("No students match the current filters.")
        else:
            col1, col2 = st.columns(2)
            with col1:
                st.plotly_chart(create_school_bar_chart(view.bar_series), use_container_width=True)
            with col2:
                st.plotly_chart(create_usage_scatter(view.scatter_series), use_container_width=True)
                if len(view.filtered_records) > len(view.scatter_series):
                    st.caption(f"Showing the first {len(view.scatter_series)} of "
                               f"{len(view.filtered_records)} students.")

    # ==================== TAB 2: STUDENTS ====================
    with tab_students:
        st.subheader("Follow-up Priority")
        st.markdown(
            "<span class='tag-legend'>Needs Attention: post score below 60. "
            "Ineffective Learning: over 60 minutes with no gain. "
            "High Potential: under 30 minutes with a gain of 10+.</span>",
            unsafe_allow_html=True
        )
        table = build_priority_table(view.filtered_records)
        if len(table) > 0:
            st.dataframe(table, use_container_width=True, hide_index=True)
        else:
            st.info("No students match the current filters.")

    # ==================== TAB 3: ANALYSIS ====================
    with tab_analysis:
        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(
                create_correlation_heatmap(correlation_matrix(view.filtered_records)),
                use_container_width=True
            )
        with col2:
            st.plotly_chart(
                create_task_tier_chart(task_completion_tiers(view.filtered_records)),
                use_container_width=True
            )


if __name__ == "__main__":
    main()
