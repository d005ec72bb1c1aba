import json
import logging
from dataclasses import dataclass
from typing import Optional

import openai

import config

SYSTEM_PROMPT = """
You will receive a user's question as text and an attached image showing the user's hand-drawn solution.
Your task is to determine whether the user's solution is correct according to the question.

You MUST return a JSON object with exactly one field:
1. "is_correct": boolean - true if the solution in the image is correct, false otherwise.

Do not provide any explanation or additional text.

Example Output:
{
  "is_correct": true
}
"""


class VerificationError(Exception):
    """The oracle could not produce a correctness verdict."""


@dataclass(frozen=True)
class VerificationResult:
    is_correct: bool


class SolutionVerifier:
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 model: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        api_key = api_key or config.OPENAI_API_KEY
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found in environment.")
        self.model = model or config.OPENAI_MODEL
        # base_url left as None uses the official endpoint
        self.client = openai.AsyncClient(api_key=api_key, base_url=(base_url or config.OPENAI_BASE_URL or None))

    async def verify(self, question_text: str, image: str) -> VerificationResult:
        """
        Judges a hand-drawn solution.

        `image` is a self-describing data URL (data:image/png;base64,...).
        Raises VerificationError on transport failures and unparseable replies.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": [
                        {"type": "text", "text": question_text},
                        {"type": "image_url", "image_url": {"url": image, "detail": "high"}},
                    ]},
                ],
                temperature=0.0,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            self.logger.error(f"Verification request failed: {e}", exc_info=True)
            raise VerificationError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        return parse_verdict(content)


def parse_verdict(content: Optional[str]) -> VerificationResult:
    if not content:
        raise VerificationError("Empty response from verification model")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise VerificationError(f"Failed to parse response: {content!r}") from e

    is_correct = data.get("is_correct") if isinstance(data, dict) else None
    if not isinstance(is_correct, bool):
        raise VerificationError(f"Response has no boolean is_correct: {content!r}")
    return VerificationResult(is_correct=is_correct)
