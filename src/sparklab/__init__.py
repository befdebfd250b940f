"""sparklab -- batch and stream processing on Apache Spark, side by side."""

__version__ = "0.3.0"
