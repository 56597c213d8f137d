"""Prompt validation for image generation jobs.

Validates text prompts before they are fanned out to the image backends.
"""

MAX_PROMPT_LENGTH = 2000


def validate_prompt(prompt: object) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Prompt value taken from the job input

    Returns:
        The prompt with surrounding whitespace removed

    Raises:
        ValueError: If prompt is missing, not a string, blank, or too long
    """
    if prompt is None:
        raise ValueError("Prompt cannot be empty or None")

    if not isinstance(prompt, str):
        raise ValueError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValueError("Prompt cannot be empty or None")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt
