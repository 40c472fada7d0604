"""
Stage abstraction for the note pipeline.

Each stage has:
- A unique name for identification
- A timeout enforced by the pipeline orchestrator
- can_execute() deciding whether the stage runs or is skipped
- Execute method that performs the actual work and returns its output

Example:
    class TaggingStage(BaseStage):
        name = "tagging"
        timeout = 10.0

        def can_execute(self, context: PipelineContext) -> bool:
            return "generated_content" in context.input

        async def execute(self, context: PipelineContext) -> TaggingOutput:
            content = context.input["generated_content"]
            return TaggingOutput(tags=extract_tags(content))

    orchestrator.register_stage(TaggingStage())
"""

from abc import ABC, abstractmethod
from typing import Any

from clipnote.models.context import PipelineContext

DEFAULT_STAGE_TIMEOUT = 30.0  # seconds


class StageError(Exception):
    """Error during stage execution.

    Attributes:
        stage_name: Name of the stage that failed
        message: Error description
        cause: Original exception (if any)
        recoverable: True if running the stage again may succeed
    """

    def __init__(
        self,
        stage_name: str,
        message: str,
        cause: Exception | None = None,
        recoverable: bool = False,
    ):
        self.stage_name = stage_name
        self.message = message
        self.cause = cause
        self.recoverable = recoverable
        super().__init__(f"[{stage_name}] {message}")


class StageTimeoutError(StageError):
    """Stage lost the race against its timeout (always recoverable)."""

    def __init__(self, stage_name: str, timeout: float, cause: Exception | None = None):
        super().__init__(
            stage_name,
            f"Stage '{stage_name}' exceeded timeout of {timeout * 1000:.0f}ms",
            cause,
            recoverable=True,
        )
        self.timeout = timeout


class BaseStage(ABC):
    """Abstract base class for pipeline stages.

    Subclasses must implement:
    - name: Unique stage identifier
    - execute(): Async method that performs the work

    Optional overrides:
    - timeout: Seconds before the orchestrator cancels the stage
    - can_execute(): Precondition check (False = skipped)
    - cleanup(): Release resources held by the stage
    """

    name: str
    timeout: float = DEFAULT_STAGE_TIMEOUT

    @abstractmethod
    async def execute(self, context: PipelineContext) -> Any:
        """Execute the stage.

        Args:
            context: Context with the running input of previous stages

        Returns:
            Stage output (Pydantic model or dict), merged into the input

        Raises:
            StageError: If execution fails
        """
        pass

    def can_execute(self, context: PipelineContext) -> bool:
        """Check whether the stage's inputs are present.

        Args:
            context: Current pipeline context

        Returns:
            True to run the stage, False to record it as skipped
        """
        return True

    def get_timeout(self) -> float:
        """Timeout in seconds."""
        return self.timeout

    async def cleanup(self) -> None:
        """Release resources (called by PipelineOrchestrator.cleanup())."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, timeout={self.timeout})"
