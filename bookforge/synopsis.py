"""
Seam for the AI synopsis assistant.

The assistant itself is an external service; bookforge only validates the
input and normalizes the outcome. Any object with an async
``suggest(synopsis)`` method returning :class:`SynopsisSuggestions` (or a
mapping with the same keys) can be plugged in.
"""

import logging
from typing import Any, Mapping, Protocol, Union

from .errors import BookforgeError, SuggestionServiceError, SynopsisTooShortError
from .pydantic_compat import MODEL_CONFIG, BaseModel, Field, PydanticVersion

logger = logging.getLogger(__name__)

MIN_SYNOPSIS_LENGTH = 20


class SynopsisSuggestions(BaseModel):
    suggestions: str
    grammar_improvements: str = Field(alias="grammarImprovements")

    if PydanticVersion == 2:
        model_config = MODEL_CONFIG
    else:
        class Config:
            allow_population_by_field_name = True


class SynopsisAssistant(Protocol):
    async def suggest(self, synopsis: str) -> Union[SynopsisSuggestions, Mapping[str, Any]]:
        ...


def validate_synopsis(synopsis: str) -> str:
    text = (synopsis or "").strip()
    if len(text) < MIN_SYNOPSIS_LENGTH:
        raise SynopsisTooShortError(
            f"Synopsis must be at least {MIN_SYNOPSIS_LENGTH} characters long."
        )
    return text


async def request_synopsis_suggestions(
    assistant: SynopsisAssistant, synopsis: str
) -> SynopsisSuggestions:
    text = validate_synopsis(synopsis)
    try:
        result = await assistant.suggest(text)
    except BookforgeError:
        raise
    except Exception as exc:
        logger.error(f"Synopsis assistant failed: {exc!r}")
        raise SuggestionServiceError(
            "An error occurred while generating suggestions. Please try again."
        ) from exc

    if isinstance(result, SynopsisSuggestions):
        return result
    try:
        return SynopsisSuggestions(**dict(result))
    except (TypeError, ValueError) as exc:
        raise SuggestionServiceError(f"Malformed suggestion payload: {exc}") from exc
