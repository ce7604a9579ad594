"""
NEONGUARD — Error Taxonomy
===========================

Client side (raised by validators, caught at the instrumentation boundary):

    ValidationError       malformed or forbidden input; rejected, no state change
    RateLimitError        sliding-window cap exceeded; rejected and logged
    ManipulationDetected  hard gate; rejected and flagged
    SuspiciousPattern     soft gate; accepted but flagged

Server side (never escape VerificationEngine.verify):

    StructuralError       malformed submitted session; processing continues
    ReconstructionError   fault while replaying a session; maximal contribution
"""


class AntiCheatError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationError(AntiCheatError):
    """Input action is malformed or outside the vocabulary."""


class RateLimitError(AntiCheatError):
    """Input action exceeded a sliding-window rate cap."""


class ManipulationDetected(AntiCheatError):
    """A state snapshot holds internally impossible values."""

    def __init__(self, signals: list[str]) -> None:
        self.signals = list(signals)
        super().__init__(f"Manipulation detected: {', '.join(self.signals)}")


class SuspiciousPattern(AntiCheatError):
    """Input history matches one or more soft-gate heuristics."""

    def __init__(self, categories: list[str]) -> None:
        self.categories = list(categories)
        super().__init__(f"Detected patterns: {', '.join(self.categories)}")


class StructuralError(AntiCheatError):
    """A submitted session payload is missing required fields."""


class ReconstructionError(AntiCheatError):
    """A submitted session could not be replayed."""


class SessionSealedError(AntiCheatError):
    """A sealed SessionRecord was mutated."""
