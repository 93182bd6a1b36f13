"""Errors raised by the story flow core and its collaborators."""


class StoryFlowError(Exception):
    """Base class for all story flow errors."""


class NotFoundError(StoryFlowError):
    pass


class SessionNotFoundError(NotFoundError):
    def __init__(self, story_run_id: str):
        super().__init__(f"Story session not found: {story_run_id}")
        self.story_run_id = story_run_id


class StepNotFoundError(NotFoundError):
    def __init__(self, step_id: str, story_run_id: str | None = None):
        detail = f"Story step not found: {step_id}"
        if story_run_id:
            detail += f" (not the current step of run {story_run_id})"
        super().__init__(detail)
        self.step_id = step_id
        self.story_run_id = story_run_id


class ChoiceNotFoundError(NotFoundError):
    def __init__(self, choice_id: str, step_id: str):
        super().__init__(f"Selected choice {choice_id!r} not found in step {step_id}")
        self.choice_id = choice_id
        self.step_id = step_id


class InvalidChoiceError(StoryFlowError):
    """A generated choice is missing its id, text or slug."""


class CollaboratorError(StoryFlowError):
    """Persistence or generation failed; the message says which operation."""


class GenerationServiceError(StoryFlowError):
    """The narrative generation model returned an error response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429 or "rate limit" in str(self).lower()
