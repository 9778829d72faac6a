"""
Error taxonomy for the detection pipeline.

None of these are fatal: the pipeline logs them, updates status where
relevant, and waits for the next tick.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class AcquisitionFailure(PipelineError):
    """No usable frame source (camera missing, stream down)."""


class InferenceFailure(PipelineError):
    """The detector call failed or raised."""


class SideEffectFailure(PipelineError):
    """An alert or snapshot action failed."""
