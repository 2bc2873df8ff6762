"""Mistral chat completions client for meal descriptions."""

from dataclasses import dataclass

import httpx
from pydantic import BaseModel, ValidationError

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

DEFAULT_MISTRAL_MODEL = "mistral-large-3-25-12"
DEFAULT_MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
_MAX_ERROR_BODY_CHARS = 2000


class _ChatMessage(BaseModel):
    content: str | None = None


class _ChatChoice(BaseModel):
    message: _ChatMessage


class _ChatCompletion(BaseModel):
    choices: list[_ChatChoice]


@dataclass
class MistralDescriptionClient(DescriptionProvider):
    """Description provider calling the Mistral chat completions API."""

    secret_store: SecretStore
    http_client: httpx.AsyncClient
    model: str = DEFAULT_MISTRAL_MODEL
    base_url: str = DEFAULT_MISTRAL_BASE_URL

    @classmethod
    def create(
        cls,
        secret_store: SecretStore,
        model: str = DEFAULT_MISTRAL_MODEL,
        base_url: str = DEFAULT_MISTRAL_BASE_URL,
    ) -> "MistralDescriptionClient":
        """Create a Mistral client with a managed httpx session."""
        return cls(
            secret_store=secret_store,
            http_client=httpx.AsyncClient(),
            model=model,
            base_url=base_url,
        )

    async def describe(self, images: list[bytes], notes: str | None) -> str:
        """Describe meal photos using structured JSON output."""
        if not images:
            raise DecodingError("No images to describe")
        api_key = self.secret_store.get()
        if not api_key:
            raise NoCredentialError()

        try:
            response = await self.http_client.post(
                f"{self.base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "model": self.model,
                    "messages": build_description_messages(images, notes),
                    "response_format": DESCRIPTION_RESPONSE_FORMAT,
                },
                timeout=60,
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network error: {exc}") from exc

        if not response.is_success:
            raise HttpError(
                response.status_code, response.text[:_MAX_ERROR_BODY_CHARS] or None
            )

        try:
            completion = _ChatCompletion.model_validate_json(response.content)
        except ValidationError as exc:
            raise DecodingError() from exc
        if not completion.choices or completion.choices[0].message.content is None:
            raise DecodingError("Response has no message content")

        try:
            payload = DescriptionPayload.model_validate_json(
                completion.choices[0].message.content
            )
        except ValidationError as exc:
            raise DecodingError() from exc
        return payload.description

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
