"""SmallSteps daily planning engine."""

__version__ = "0.1.0"
