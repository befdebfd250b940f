"""Graph analytics over the referral network with plain DataFrames.

GraphX has no Python API, so the classic graph algorithms are written
as iterative DataFrame joins: each iteration is one message-passing
superstep (join edges with the current vertex state, aggregate the
messages per destination). Lineage is cut every iteration with
``localCheckpoint`` so plans stay flat however many supersteps run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sparklab.metrics import JobMetrics

from .common import read_referrals, require_columns
from .job import spark_errors

if TYPE_CHECKING:
    from pyspark.sql import DataFrame, SparkSession

    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)


class GraphAnalyzer:
    """Degree, PageRank, connected components and triangle counts.

    Args:
        spark: Active session
        edges_df: Directed edges with ``src`` and ``dst`` columns
        vertices_df: Optional vertices with an ``id`` column. Defaults to
            the distinct endpoints of *edges_df*.
    """

    def __init__(
        self,
        spark: SparkSession,
        edges_df: DataFrame,
        vertices_df: DataFrame | None = None,
    ):
        from pyspark.sql.functions import col

        require_columns(edges_df, ["src", "dst"], source="edges")
        self.spark = spark
        self.edges = (
            edges_df.select("src", "dst")
            .filter(col("src").isNotNull() & col("dst").isNotNull())
            .distinct()
            .cache()
        )
        if vertices_df is None:
            vertices_df = (
                self.edges.select(col("src").alias("id"))
                .union(self.edges.select(col("dst").alias("id")))
                .distinct()
            )
        else:
            require_columns(vertices_df, ["id"], source="vertices")
            vertices_df = vertices_df.select("id").distinct()
        self.vertices = vertices_df.cache()

    def num_vertices(self) -> int:
        return self.vertices.count()

    def num_edges(self) -> int:
        return self.edges.count()

    def _undirected(self) -> DataFrame:
        """Both directions of every edge, self loops removed."""
        from pyspark.sql.functions import col

        forward = self.edges.filter(col("src") != col("dst"))
        backward = forward.select(col("dst").alias("src"), col("src").alias("dst"))
        return forward.union(backward).distinct()

    def degrees(self) -> DataFrame:
        """``id, in_degree, out_degree, degree``; isolated vertices get 0."""
        from pyspark.sql.functions import col

        out_deg = self.edges.groupBy(col("src").alias("id")).count()
        out_deg = out_deg.withColumnRenamed("count", "out_degree")
        in_deg = self.edges.groupBy(col("dst").alias("id")).count()
        in_deg = in_deg.withColumnRenamed("count", "in_degree")
        return (
            self.vertices.join(in_deg, "id", "left")
            .join(out_deg, "id", "left")
            .fillna(0, subset=["in_degree", "out_degree"])
            .withColumn("degree", col("in_degree") + col("out_degree"))
            .select("id", "in_degree", "out_degree", "degree")
        )

    def pagerank(
        self,
        max_iterations: int = 20,
        damping: float = 0.85,
        tolerance: float = 1e-4,
    ) -> DataFrame:
        """Power-iteration PageRank; returns ``id, rank`` summing to 1.

        Rank held by vertices without out-edges is spread evenly over all
        vertices each iteration. Stops early once the L1 change between
        iterations drops below *tolerance*.
        """
        from pyspark.sql.functions import abs as abs_
        from pyspark.sql.functions import coalesce, col, count, lit
        from pyspark.sql.functions import sum as sum_

        n = self.num_vertices()
        if n == 0:
            return self.vertices.withColumn("rank", lit(0.0))

        out_deg = self.edges.groupBy("src").agg(count(lit(1)).alias("out_degree"))
        links = self.edges.join(out_deg, "src")
        ranks = self.vertices.withColumn("rank", lit(1.0 / n)).localCheckpoint()

        for iteration in range(1, max_iterations + 1):
            contribs = (
                links.join(ranks, links.src == ranks.id)
                .groupBy(col("dst").alias("id"))
                .agg(sum_(col("rank") / col("out_degree")).alias("contrib"))
            )
            dangling = (
                ranks.join(out_deg, ranks.id == out_deg.src, "left_anti")
                .agg(sum_("rank").alias("mass"))
                .first()["mass"]
            ) or 0.0

            new_ranks = (
                self.vertices.join(contribs, "id", "left")
                .select(
                    "id",
                    (
                        lit((1 - damping) / n)
                        + lit(damping) * (coalesce(col("contrib"), lit(0.0)) + lit(dangling / n))
                    ).alias("rank"),
                )
                .localCheckpoint()
            )

            delta = (
                new_ranks.alias("new")
                .join(ranks.alias("old"), "id")
                .agg(sum_(abs_(col("new.rank") - col("old.rank"))).alias("delta"))
                .first()["delta"]
            ) or 0.0
            ranks = new_ranks
            logger.debug("PageRank iteration %s: delta=%.6f", iteration, delta)
            if delta < tolerance:
                logger.info("PageRank converged after %s iterations", iteration)
                break

        return ranks

    def connected_components(self, max_iterations: int = 50) -> DataFrame:
        """Weakly connected components by min-label propagation.

        Returns ``id, component`` where ``component`` is the smallest vertex
        id in the vertex's component. Edge direction is ignored.
        """
        from pyspark.sql.functions import coalesce, col, least
        from pyspark.sql.functions import min as min_

        edges = self._undirected().cache()
        labels = self.vertices.select("id", col("id").alias("component")).localCheckpoint()

        try:
            for iteration in range(1, max_iterations + 1):
                candidates = (
                    edges.join(labels, edges.src == labels.id)
                    .groupBy(col("dst").alias("id"))
                    .agg(min_("component").alias("candidate"))
                )
                new_labels = (
                    labels.join(candidates, "id", "left")
                    .select(
                        "id",
                        least(col("component"), coalesce(col("candidate"), col("component"))).alias(
                            "component"
                        ),
                        (col("candidate") < col("component")).alias("changed"),
                    )
                    .localCheckpoint()
                )
                changed = new_labels.filter(col("changed")).count()
                labels = new_labels.drop("changed")
                logger.debug("Components iteration %s: %s labels changed", iteration, changed)
                if changed == 0:
                    logger.info("Components converged after %s iterations", iteration)
                    break
            else:
                logger.warning("Components did not converge in %s iterations", max_iterations)
        finally:
            edges.unpersist()

        return labels

    def triangle_count(self) -> DataFrame:
        """``id, triangles``: triangles through each vertex, direction ignored."""
        from pyspark.sql.functions import array, col, explode, greatest, least

        # Each undirected edge once, as (a, b) with a < b
        simple = (
            self.edges.filter(col("src") != col("dst"))
            .select(least("src", "dst").alias("a"), greatest("src", "dst").alias("b"))
            .distinct()
            .cache()
        )
        try:
            ab = simple.alias("ab")
            bc = simple.alias("bc")
            ac = simple.alias("ac")
            # a < b < c, so every triangle is found exactly once
            triangles = (
                ab.join(bc, col("ab.b") == col("bc.a"))
                .join(ac, (col("ab.a") == col("ac.a")) & (col("bc.b") == col("ac.b")))
                .select(array(col("ab.a"), col("ab.b"), col("bc.b")).alias("members"))
            )
            per_vertex = (
                triangles.select(explode("members").alias("id")).groupBy("id").count()
            ).withColumnRenamed("count", "triangles")
            result = (
                self.vertices.join(per_vertex, "id", "left")
                .fillna(0, subset=["triangles"])
                .select("id", "triangles")
                .localCheckpoint()
            )
        finally:
            simple.unpersist()
        return result


def run_graph_job(spark: SparkSession, config: SparkLabConfig) -> JobMetrics:
    """Run every algorithm on the referral edges and write the results."""
    from pyspark.sql.functions import col, countDistinct

    metrics = JobMetrics(job_name="graph", job_type="graph", start_time=datetime.now())
    settings = config.graph
    edges = read_referrals(
        spark, config.get_referrals_path(), config.data.input_format, config.data.csv_header
    )
    analyzer = GraphAnalyzer(spark, edges)
    metrics.input_rows = analyzer.num_edges()
    metrics.extra["vertices"] = analyzer.num_vertices()

    out = config.get_graph_output_path()
    ranks = analyzer.pagerank(settings.max_iterations, settings.damping, settings.tolerance)
    components = analyzer.connected_components(settings.component_iterations)
    vertices = (
        analyzer.degrees()
        .join(ranks, "id")
        .join(components, "id")
        .join(analyzer.triangle_count(), "id")
    )
    with spark_errors(f"Writing {out / 'vertices'}"):
        vertices.write.mode("overwrite").parquet(str(out / "vertices"))
    metrics.outputs["vertices"] = str(out / "vertices")
    metrics.output_rows = metrics.extra["vertices"]

    metrics.extra["components"] = components.agg(
        countDistinct("component").alias("n")
    ).first()["n"]
    top = ranks.orderBy(col("rank").desc()).limit(5).collect()
    metrics.extra["top_pagerank"] = [{"id": r["id"], "rank": round(r["rank"], 6)} for r in top]
    logger.info(
        "Graph: %s vertices, %s edges, %s components",
        metrics.extra["vertices"],
        metrics.input_rows,
        metrics.extra["components"],
    )
    return metrics.finish(success=True)
