"""Exceptions raised by the optimizer and its collaborators."""


class MogaError(Exception):
    """Base class for every error raised by biped_moga."""


class GeneSpecError(MogaError, ValueError):
    """Invalid gene specification or genome values."""


class GenomeLengthError(GeneSpecError):
    """Genome length does not match the gene specification."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Genome length {got} != gene specification length {expected}")
        self.expected = expected
        self.got = got


class ConfigurationError(MogaError, ValueError):
    """Run configuration is inconsistent."""


class IncompatibleStateError(MogaError):
    """Persisted run state cannot be resumed with the current configuration."""


class RunStateError(MogaError, RuntimeError):
    """Illegal transition of the run state machine."""


class SimulationError(MogaError, RuntimeError):
    """Raised by simulators on non-convergent or overlong episodes."""
