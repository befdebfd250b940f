"""MLlib churn model: logistic regression over enriched events.

The pipeline is the usual MLlib chain:

    StringIndexer -> OneHotEncoder -> VectorAssembler -> StandardScaler
        -> LogisticRegression

Categorical columns are indexed and one-hot encoded, numeric columns
are assembled with them into a single vector, scaled, and fed to the
classifier. Everything is fit as one ``Pipeline`` so the saved
``PipelineModel`` carries the fitted indexers and scaler with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sparklab.metrics import JobMetrics

from .common import apply_enrichment, check_event_columns, read_events
from .job import PipelineError, spark_errors

if TYPE_CHECKING:
    from pyspark.ml import Pipeline, PipelineModel
    from pyspark.sql import DataFrame, SparkSession

    from sparklab.config import SparkLabConfig

logger = logging.getLogger(__name__)

FEATURES_COL = "features"
SCALED_FEATURES_COL = "scaled_features"
LABEL_COL = "label"


@dataclass
class TrainingResult:
    """A fitted pipeline and its hold-out evaluation."""

    model: PipelineModel
    metrics: dict[str, float] = field(default_factory=dict)
    train_rows: int = 0
    test_rows: int = 0


class ChurnModelTrainer:
    """Trains, evaluates, saves and applies the churn classifier."""

    def __init__(self, spark: SparkSession, config: SparkLabConfig):
        self.spark = spark
        self.config = config
        self.settings = config.ml

    def load_training_data(self) -> DataFrame:
        """Enriched events from the landing zone."""
        source = (
            self.spark,
            self.config.get_events_path(),
            self.config.data.input_format,
            self.config.data.csv_header,
        )
        check_event_columns(*source)
        return apply_enrichment(read_events(*source))

    def build_pipeline(self) -> Pipeline:
        from pyspark.ml import Pipeline
        from pyspark.ml.classification import LogisticRegression
        from pyspark.ml.feature import (
            OneHotEncoder,
            StandardScaler,
            StringIndexer,
            VectorAssembler,
        )

        categorical = self.settings.categorical_features
        indexed = [f"{c}_idx" for c in categorical]
        encoded = [f"{c}_vec" for c in categorical]

        stages = []
        if categorical:
            # "keep" puts unseen or null categories into an extra bucket
            stages.append(
                StringIndexer(inputCols=categorical, outputCols=indexed, handleInvalid="keep")
            )
            stages.append(OneHotEncoder(inputCols=indexed, outputCols=encoded))

        stages += [
            VectorAssembler(
                inputCols=self.settings.numeric_features + encoded,
                outputCol=FEATURES_COL,
                handleInvalid="keep",
            ),
            StandardScaler(inputCol=FEATURES_COL, outputCol=SCALED_FEATURES_COL),
            LogisticRegression(
                featuresCol=SCALED_FEATURES_COL,
                labelCol=LABEL_COL,
                maxIter=self.settings.max_iter,
                regParam=self.settings.reg_param,
                elasticNetParam=self.settings.elastic_net_param,
            ),
        ]
        return Pipeline(stages=stages)

    def prepare(self, df: DataFrame, with_label: bool = True) -> DataFrame:
        """Cast the label to double and fill missing numeric features with 0.

        With ``with_label=False`` (scoring) the label column is not required.

        Raises:
            PipelineError: If the label or a feature column is missing
        """
        from pyspark.sql.functions import col

        label = self.settings.label_col
        if with_label and label not in df.columns:
            raise PipelineError(f"Label column '{label}' not found in training data")
        missing = [
            c
            for c in self.settings.numeric_features + self.settings.categorical_features
            if c not in df.columns
        ]
        if missing:
            raise PipelineError(f"Feature columns not found: {', '.join(missing)}")

        prepared = df
        if with_label:
            prepared = prepared.filter(col(label).isNotNull()).withColumn(
                LABEL_COL, col(label).cast("double")
            )
        for c in self.settings.numeric_features:
            prepared = prepared.withColumn(c, col(c).cast("double"))
        return prepared.fillna(0.0, subset=self.settings.numeric_features)

    def evaluate(self, predictions: DataFrame) -> dict[str, float]:
        """Area under ROC/PR plus accuracy and F1 on a scored DataFrame."""
        from pyspark.ml.evaluation import (
            BinaryClassificationEvaluator,
            MulticlassClassificationEvaluator,
        )

        metrics: dict[str, float] = {}
        for name in ("areaUnderROC", "areaUnderPR"):
            evaluator = BinaryClassificationEvaluator(
                labelCol=LABEL_COL, rawPredictionCol="rawPrediction", metricName=name
            )
            metrics[name] = round(evaluator.evaluate(predictions), 4)
        for name in ("accuracy", "f1"):
            evaluator = MulticlassClassificationEvaluator(
                labelCol=LABEL_COL, predictionCol="prediction", metricName=name
            )
            metrics[name] = round(evaluator.evaluate(predictions), 4)
        return metrics

    def train(self, df: DataFrame) -> TrainingResult:
        """Split, fit and evaluate.

        Raises:
            PipelineError: If the label has fewer than two classes or the
                split leaves either side empty
        """
        prepared = self.prepare(df).cache()
        try:
            classes = prepared.select(LABEL_COL).distinct().count()
            if classes < 2:
                raise PipelineError(
                    f"Label column '{self.settings.label_col}' needs two classes, found {classes}"
                )

            fraction = self.settings.train_fraction
            train_df, test_df = prepared.randomSplit(
                [fraction, 1 - fraction], seed=self.settings.seed
            )
            train_rows, test_rows = train_df.count(), test_df.count()
            if train_rows == 0 or test_rows == 0:
                raise PipelineError(
                    f"Not enough rows to split (train={train_rows}, test={test_rows})"
                )
            logger.info("Training on %s rows, testing on %s", train_rows, test_rows)

            model = self.build_pipeline().fit(train_df)
            metrics = self.evaluate(model.transform(test_df))
        finally:
            prepared.unpersist()

        logger.info("Model metrics: %s", metrics)
        return TrainingResult(
            model=model, metrics=metrics, train_rows=train_rows, test_rows=test_rows
        )

    def save(self, model: PipelineModel, path: str | Path | None = None) -> str:
        target = str(path or self.config.get_model_path())
        with spark_errors(f"Saving model to {target}"):
            model.write().overwrite().save(target)
        logger.info("Saved model to %s", target)
        return target

    def load(self, path: str | Path | None = None) -> PipelineModel:
        from pyspark.ml import PipelineModel

        target = str(path or self.config.get_model_path())
        with spark_errors(f"Loading model from {target}"):
            return PipelineModel.load(target)

    def score(self, model: PipelineModel, df: DataFrame) -> DataFrame:
        """Apply *model*; returns ``event_id, customer_id, churn_probability, prediction``."""
        from pyspark.ml.functions import vector_to_array
        from pyspark.sql.functions import col

        scored = model.transform(self.prepare(df, with_label=False))
        return scored.select(
            "event_id",
            "customer_id",
            vector_to_array(col("probability"))[1].alias("churn_probability"),
            "prediction",
        )

    def run(self) -> JobMetrics:
        """Train on the landing zone, save the model, and report."""
        metrics = JobMetrics(job_name="train", job_type="train", start_time=datetime.now())
        df = self.load_training_data()
        result = self.train(df)
        metrics.input_rows = result.train_rows + result.test_rows
        metrics.outputs["model"] = self.save(result.model)
        metrics.extra.update(result.metrics)
        metrics.extra["train_rows"] = result.train_rows
        metrics.extra["test_rows"] = result.test_rows
        return metrics.finish(success=True)
