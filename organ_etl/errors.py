class PipelineError(RuntimeError):
    pass


class ReferenceStoreError(PipelineError):
    """Reference lookups could not be served; fatal to the run."""


class ResolutionError(PipelineError):
    """A validated record no longer resolves against the reference store at load time."""

    def __init__(self, entity_type: str, unresolved: dict[str, str | None]) -> None:
        self.entity_type = entity_type
        self.unresolved = unresolved
        details = ", ".join(f"{key}->{code!r}" for key, code in sorted(unresolved.items()))
        super().__init__(f"{entity_type} records failed reference resolution: {details}")


class ReconciliationError(PipelineError):
    pass


class RunStateError(PipelineError):
    pass
