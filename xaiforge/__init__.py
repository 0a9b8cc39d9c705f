"""XAI Forge: train tabular predictors and explain individual predictions."""

__version__ = "1.0.0"
