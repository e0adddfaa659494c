"""
Recitation grading through the Gemini generative-language REST API.

The grader hears the recorded audio together with the expected ayah text and
answers with one verdict per source word. Every answer is validated before it
is handed to the verdict applier; anything else becomes a failure outcome.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

import requests
from pydantic import ValidationError

from .config import get_settings
from .recording import RecordedAudio
from .verdict import GradingResponse, WordVerdict


@dataclass
class GradingOk:
    results: List[WordVerdict] = field(default_factory=list)


@dataclass
class GradingMalformed:
    reason: str


@dataclass
class GradingTimeout:
    reason: str = "Grading request timed out"


@dataclass
class GradingFailed:
    reason: str


GradingOutcome = Union[GradingOk, GradingMalformed, GradingTimeout, GradingFailed]

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models/"

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "results": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "word": {"type": "STRING"},
                    "status": {"type": "STRING", "enum": ["correct", "wrong"]},
                },
                "required": ["word", "status"],
            },
        },
    },
    "required": ["results"],
}

PROMPT_TEMPLATE = """
Reciter is reciting Surah {surah_name}, Ayah {ayah_number} from memory.
Correct Text: "{expected_text}"
The correct text has {word_count} words.

Task:
1. Strictly compare the recitation to the Arabic text, word by word.
2. Return exactly one entry in 'results' per word of the correct text, in the same order.
3. Each entry echoes the word from the correct text in 'word'.
4. 'status' is "correct" if the word was recited (minor tajweed ignored), "wrong" if it was wrong or missing.
"""


class RecitationGrader:
    """Client for grading a recorded recitation against the expected text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.timeout = timeout or settings.grading_timeout
        self.session = requests.Session()
        self.logger = logging.getLogger(__name__)

        if not self.api_key:
            self.logger.warning("Gemini API key not found. Every grading request will fail.")

    def grade(
        self,
        expected_text: str,
        audio: RecordedAudio,
        surah_name: str = "",
        ayah_number: Optional[int] = None,
    ) -> GradingOutcome:
        """
        Grade a recitation.

        Args:
            expected_text: Arabic text of the ayah being recited
            audio: Captured recitation
            surah_name: Surah name used in the prompt
            ayah_number: Ayah position used in the prompt

        Returns:
            GradingOk with validated verdicts, or a failure outcome. Never raises.
        """
        if not self.api_key:
            return GradingFailed("API Key not found")

        prompt = PROMPT_TEMPLATE.format(
            surah_name=surah_name or "?",
            ayah_number=ayah_number if ayah_number is not None else "?",
            expected_text=expected_text,
            word_count=len(expected_text.split()),
        )
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": audio.mime_type,
                                "data": base64.b64encode(audio.data).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

        url = f"{GEMINI_BASE_URL}{self.model}:generateContent"
        self.logger.info(f"Grading recitation of {len(audio.data)} bytes with {self.model}")
        try:
            response = self.session.post(
                url,
                headers={"x-goog-api-key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.Timeout:
            self.logger.warning(f"Grading request timed out after {self.timeout}s")
            return GradingTimeout()
        except requests.RequestException as e:
            self.logger.error(f"Network error accessing grading API: {e}")
            return GradingFailed(str(e))

        try:
            body = response.json()
        except ValueError as e:
            return GradingMalformed(f"Response is not JSON: {e}")

        return self.parse_response(body)

    def parse_response(self, body) -> GradingOutcome:
        """Extract and validate the verdict list from a generateContent response body."""
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            self.logger.warning("Grading response has no candidate text")
            return GradingMalformed("No candidate text in response")
        if not isinstance(text, str):
            self.logger.warning(f"Grading candidate text is {type(text).__name__}, not a string")
            return GradingMalformed("Candidate text is not a string")

        try:
            parsed = GradingResponse.model_validate(json.loads(text))
        except json.JSONDecodeError as e:
            self.logger.warning(f"Grading answer is not JSON: {e}")
            return GradingMalformed(f"Answer is not JSON: {e}")
        except ValidationError as e:
            self.logger.warning(f"Grading answer has the wrong shape: {e.error_count()} errors")
            return GradingMalformed(f"Answer has the wrong shape: {e}")

        if not parsed.results:
            return GradingMalformed("Answer contains no verdicts")

        return GradingOk(results=parsed.results)
