"""StepFlow: sequential, photo-gated approval workflows."""

__version__ = "0.1.0"
