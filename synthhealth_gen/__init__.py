"""SynthHealth personalized sleep / step-count generator.

Produces, per virtual user and day:
- sleep: one session per night, dated by its wake-up morning, split into stages
- steps: a daily step distribution built from major/minor/micro activity events
- issues: non-fatal diagnostics from the compliance layer

Designed for exercising health-data consumers without real user data.
"""

__all__ = [
    "GeneratorConfig",
    "HistoricalOrchestrator",
    "EndBoundary",
    "MissingInputError",
    "generate_range",
    "generate_dataset",
]
from .config import GeneratorConfig
from .history import EndBoundary, HistoricalOrchestrator, MissingInputError, generate_range
from .pipeline import generate_dataset
