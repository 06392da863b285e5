import base64
import json
import logging
from typing import Optional

from fastapi import Depends
from openai import OpenAI, OpenAIError

from .config import Settings, get_settings
from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

NO_TEXT_MARKER = "NO_TEXT_FOUND"
OCR_PROMPT = (
    "Extract all text from this document. Return only the extracted text, nothing else. "
    f"If there is no text, return '{NO_TEXT_MARKER}'."
)


class DocumentAIError(UpstreamFailure):
    pass


class DocumentAI:
    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise DocumentAIError("OpenAI API key is not configured")
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.docai_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _complete(self, messages: list, **params) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=messages,
                **params,
            )
        except OpenAIError as exc:
            logger.error("document ai call failed: %s", type(exc).__name__)
            raise DocumentAIError(f"Document service unavailable ({type(exc).__name__})") from exc
        if not response.choices:
            raise DocumentAIError("Document service returned no answer")
        return response.choices[0].message.content or ""

    def complete_json(self, system: str, user: str) -> dict:
        """Ask for a JSON object; raises DocumentAIError on transport or parse failure."""
        content = self._complete(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.3,
            response_format={"type": "json_object"},
            max_tokens=1000,
        )
        try:
            data = json.loads(content)
        except ValueError as exc:
            raise DocumentAIError("Document service answer was not valid JSON") from exc
        if not isinstance(data, dict):
            raise DocumentAIError("Document service answer was not a JSON object")
        return data

    def extract_text_from_image(self, content: bytes, mime_type: str) -> str:
        data_url = f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"
        text = self._complete(
            [{
                "role": "user",
                "content": [
                    {"type": "text", "text": OCR_PROMPT},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }],
            max_tokens=4000,
        ).strip()
        if text == NO_TEXT_MARKER:
            return ""
        return text


def get_document_ai(settings: Settings = Depends(get_settings)) -> DocumentAI:
    return DocumentAI(settings)
