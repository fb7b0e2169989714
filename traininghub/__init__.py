"""TrainingHub — training application backend with asynchronous data exports."""

__version__ = "1.0.0"
