"""
Pipeline orchestration: metrics -> insights -> recommendations.
"""

import json
import logging
import os
from typing import Iterable, Mapping, Union

import polars as pl

from payintel.analytics.anomaly_detection import detect_all_insights
from payintel.analytics.metrics import compute_all_metrics
from payintel.analytics.recommendations import generate_recommendations
from payintel.contracts.schemas import (
    INSIGHT_SCHEMA,
    INSIGHTS_FILENAME,
    RECOMMENDATION_SCHEMA,
    RECOMMENDATIONS_FILENAME,
    REPORT_FILENAME,
)
from payintel.pipeline.ingest import as_frame

logger = logging.getLogger(__name__)


def run(records: Union[pl.DataFrame, Iterable[Mapping]]) -> dict:
    """
    Full analytics pass over an already-filtered record set. Metrics are
    computed once and shared by the detector and the recommendation stage.
    """
    df = records if isinstance(records, pl.DataFrame) else as_frame(records)

    metrics = compute_all_metrics(df)
    insights = detect_all_insights(df, metrics)
    recommendations = generate_recommendations(df, metrics)

    logger.info(
        "Pipeline finished: %d transactions, %d insights, %d recommendations",
        df.height, len(insights), len(recommendations),
    )
    return {
        "metrics": metrics,
        "insights": insights,
        "recommendations": recommendations,
    }


def insights_frame(insights: list[dict]) -> pl.DataFrame:
    return pl.DataFrame(insights, schema=INSIGHT_SCHEMA)


def recommendations_frame(recommendations: list[dict]) -> pl.DataFrame:
    return pl.DataFrame(recommendations, schema=RECOMMENDATION_SCHEMA)


def save_report(result: dict, out_dir: str) -> dict:
    """
    Write report.json plus Parquet copies of the insight and recommendation
    lists. Returns the written paths keyed by artefact.
    """
    os.makedirs(out_dir, exist_ok=True)
    paths = {
        "report": os.path.join(out_dir, REPORT_FILENAME),
        "insights": os.path.join(out_dir, INSIGHTS_FILENAME),
        "recommendations": os.path.join(out_dir, RECOMMENDATIONS_FILENAME),
    }

    with open(paths["report"], "w") as fh:
        json.dump(result, fh, indent=2, default=str)
    insights_frame(result["insights"]).write_parquet(paths["insights"])
    recommendations_frame(result["recommendations"]).write_parquet(paths["recommendations"])

    logger.info("Saved report to '%s'", out_dir)
    return paths
