"""OpenAI chat completions client for meal descriptions."""

from collections.abc import Callable
from dataclasses import dataclass, field

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from foodlog.adapters.secret_store import SecretStore
from foodlog.domain.analysis import DescriptionPayload
from foodlog.services.analysis import (
    DESCRIPTION_RESPONSE_FORMAT,
    DecodingError,
    DescriptionProvider,
    HttpError,
    NetworkError,
    NoCredentialError,
    build_description_messages,
)

_MAX_ERROR_BODY_CHARS = 2000


def _default_client_factory(api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key)


@dataclass
class OpenAIDescriptionClient(DescriptionProvider):
    """Description provider backed by OpenAI structured outputs.

    The key is read from the secret store on every call, so a key change
    takes effect without a restart.
    """

    secret_store: SecretStore
    model: str
    client_factory: Callable[[str], AsyncOpenAI] = _default_client_factory
    _client: AsyncOpenAI | None = field(default=None, init=False, repr=False)
    _client_key: str | None = field(default=None, init=False, repr=False)

    async def describe(self, images: list[bytes], notes: str | None) -> str:
        """Describe meal photos using structured JSON output."""
        if not images:
            raise DecodingError("No images to describe")
        api_key = self.secret_store.get()
        if not api_key:
            raise NoCredentialError()

        client = await self._client_for(api_key)
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=build_description_messages(images, notes),
                response_format=DESCRIPTION_RESPONSE_FORMAT,
            )
        except openai.APIConnectionError as exc:
            raise NetworkError(f"Network error: {exc}") from exc
        except openai.APIStatusError as exc:
            body = exc.response.text[:_MAX_ERROR_BODY_CHARS]
            raise HttpError(exc.status_code, body or None) from exc

        if not completion.choices or not completion.choices[0].message.content:
            raise DecodingError("Response has no message content")
        try:
            payload = DescriptionPayload.model_validate_json(
                completion.choices[0].message.content
            )
        except ValidationError as exc:
            raise DecodingError() from exc
        return payload.description

    async def close(self) -> None:
        """Close the cached OpenAI client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._client_key = None

    async def _client_for(self, api_key: str) -> AsyncOpenAI:
        if self._client is None or self._client_key != api_key:
            await self.close()
            self._client = self.client_factory(api_key)
            self._client_key = api_key
        return self._client
