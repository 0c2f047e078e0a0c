from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("clair_load_test.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 200
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13

STAGE_COLORS = {
    "index_report": "#2E86AB",
    "vulnerability_report": "#F18F01",
}

STAGE_NAMES = {
    "index_report": "Index report",
    "vulnerability_report": "Vulnerability report",
}


def render_run_charts(df: pd.DataFrame, output_dir: Path) -> list[Path]:
    """Render the latency distribution and the request timeline of one run."""
    if df.empty or "latency_ms" not in df.columns:
        LOGGER.warning("No request samples available for charts")
        return []

    output_dir.mkdir(parents=True, exist_ok=True)
    df = df.copy()
    df["stage_display"] = df["stage"].map(lambda stage: STAGE_NAMES.get(stage, stage))
    palette = {
        STAGE_NAMES.get(stage, stage): color for stage, color in STAGE_COLORS.items()
    }

    paths = [
        _render_latency_boxplot(df, palette, output_dir / "latency_by_stage.png"),
        _render_timeline(df, palette, output_dir / "requests_per_second.png"),
    ]
    return paths


def _render_latency_boxplot(df: pd.DataFrame, palette: dict[str, str], path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(
        data=df,
        x="stage_display",
        y="latency_ms",
        hue="stage_display",
        palette=palette,
        legend=False,
        showfliers=False,
        ax=ax,
    )
    sns.stripplot(
        data=df,
        x="stage_display",
        y="latency_ms",
        color="black",
        alpha=0.25,
        size=2,
        ax=ax,
    )
    ax.set_title("Request Latency by Stage", fontweight="bold", pad=15)
    ax.set_xlabel("Stage", fontweight="semibold", labelpad=10)
    ax.set_ylabel("Latency (ms)", fontweight="semibold", labelpad=10)
    fig.savefig(path, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", path)
    return path


def _render_timeline(df: pd.DataFrame, palette: dict[str, str], path: Path) -> Path:
    timeline = (
        df.assign(second=df["elapsed_s"].astype(int))
        .groupby(["second", "stage_display"])
        .size()
        .reset_index(name="requests")
    )
    fig, ax = plt.subplots(figsize=(12, 5))
    sns.lineplot(
        data=timeline,
        x="second",
        y="requests",
        hue="stage_display",
        palette=palette,
        marker="o",
        ax=ax,
    )
    ax.set_title("Completed Requests per Second", fontweight="bold", pad=15)
    ax.set_xlabel("Elapsed time (s)", fontweight="semibold", labelpad=10)
    ax.set_ylabel("Requests", fontweight="semibold", labelpad=10)
    ax.legend(title="Stage")
    fig.savefig(path, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", path)
    return path


__all__ = ["render_run_charts"]
