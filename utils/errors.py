"""
Error taxonomy shared by the pipeline core and the REST surface.

Every error carries the HTTP status the API should answer with, so the
transport can map them with a single exception handler.
"""

from __future__ import annotations


class DesignAgentError(Exception):
    """Base error for the design pipeline."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InvalidShape(DesignAgentError):
    """A stage produced output that did not parse after its single retry."""

    status_code = 500

    def __init__(self, agent_name: str, artifact_path: str) -> None:
        self.agent_name = agent_name
        self.artifact_path = artifact_path
        super().__init__(
            f"{agent_name} produced invalid JSON after retry. "
            f"Raw output saved to {artifact_path}"
        )


class GenerationUnavailable(DesignAgentError):
    """Transport, auth or rate-limit failure from the generation capability."""

    status_code = 502


class InvalidSection(DesignAgentError):
    """One or more requested section ids are not canonical."""

    status_code = 400

    def __init__(self, invalid: list[str], valid: list[str]) -> None:
        self.invalid = list(invalid)
        self.valid = list(valid)
        super().__init__(
            f"Invalid section IDs: {', '.join(self.invalid)}. "
            f"Valid IDs: {', '.join(self.valid)}."
        )


class InvalidRequest(DesignAgentError):
    status_code = 400


class RunNotFound(DesignAgentError):
    status_code = 404

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class InvalidRunState(DesignAgentError):
    """The run's current status does not allow the requested operation."""

    status_code = 400


class DesignNotReady(DesignAgentError):
    """The run has no published document yet."""

    status_code = 404

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Design document not available for run {run_id}")
