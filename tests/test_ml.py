"""Tests for the MLlib churn model."""

import pytest

from sparklab.spark.job import PipelineError
from sparklab.spark.mllib import LABEL_COL, ChurnModelTrainer

from tests.conftest import make_config

pytestmark = [pytest.mark.spark, pytest.mark.slow]

METRIC_NAMES = {"areaUnderROC", "areaUnderPR", "accuracy", "f1"}


@pytest.fixture
def trainer(spark, generated_config):
    return ChurnModelTrainer(spark, generated_config)


class TestPipeline:
    def test_stage_order(self, trainer):
        stages = [type(s).__name__ for s in trainer.build_pipeline().getStages()]
        assert stages == [
            "StringIndexer",
            "OneHotEncoder",
            "VectorAssembler",
            "StandardScaler",
            "LogisticRegression",
        ]

    def test_numeric_only(self, spark, tmp_path):
        cfg = make_config(tmp_path, ml={"categorical_features": []})
        pipeline = ChurnModelTrainer(spark, cfg).build_pipeline()
        stages = [type(s).__name__ for s in pipeline.getStages()]
        assert stages[0] == "VectorAssembler"


class TestPrepare:
    def test_casts_label_and_fills_features(self, trainer):
        prepared = trainer.prepare(trainer.load_training_data())
        assert dict(prepared.dtypes)[LABEL_COL] == "double"
        assert dict(prepared.dtypes)["satisfaction_score"] == "double"
        assert prepared.filter("satisfaction_score IS NULL").count() == 0

    def test_missing_label(self, trainer):
        df = trainer.load_training_data().drop("churned")
        with pytest.raises(PipelineError, match="Label column"):
            trainer.prepare(df)
        # Scoring does not need the label
        assert LABEL_COL not in trainer.prepare(df, with_label=False).columns

    def test_missing_feature(self, trainer):
        df = trainer.load_training_data().drop("page_views")
        with pytest.raises(PipelineError, match="page_views"):
            trainer.prepare(df)


class TestTraining:
    def test_train_and_evaluate(self, trainer):
        result = trainer.train(trainer.load_training_data())
        assert set(result.metrics) == METRIC_NAMES
        for value in result.metrics.values():
            assert 0.0 <= value <= 1.0
        assert result.train_rows > result.test_rows > 0

    def test_single_class_rejected(self, trainer):
        from pyspark.sql.functions import lit

        df = trainer.load_training_data().withColumn("churned", lit(0))
        with pytest.raises(PipelineError, match="two classes"):
            trainer.train(df)

    def test_split_deterministic(self, trainer):
        df = trainer.load_training_data()
        first = trainer.train(df)
        second = trainer.train(df)
        assert (first.train_rows, first.test_rows) == (second.train_rows, second.test_rows)

    def test_save_load_score(self, trainer, tmp_path):
        df = trainer.load_training_data()
        model = trainer.train(df).model
        path = trainer.save(model, tmp_path / "model")
        loaded = trainer.load(path)

        scored = trainer.score(loaded, df.drop("churned"))
        assert scored.columns == ["event_id", "customer_id", "churn_probability", "prediction"]
        assert scored.count() == df.count()
        bad = scored.filter("churn_probability < 0 OR churn_probability > 1").count()
        assert bad == 0

    def test_run(self, trainer, generated_config):
        metrics = trainer.run()
        assert metrics.success is True
        assert metrics.outputs["model"] == str(generated_config.get_model_path())
        assert generated_config.get_model_path().exists()
        assert METRIC_NAMES <= set(metrics.extra)
        assert metrics.input_rows == metrics.extra["train_rows"] + metrics.extra["test_rows"]
