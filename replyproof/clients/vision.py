"""
Vision check: ask an OpenAI-compatible model whether the reply image is acceptable.

POST {base}/chat/completions with an image_url content part. The model must
answer a JSON object {"isValid": bool, "message": str}. Calls can take
seconds, so only the pipeline worker uses this client.
"""

import json
import logging
import re
from typing import Optional

import requests

from replyproof.errors import CollaboratorError
from replyproof.schema import Verdict

logger = logging.getLogger(__name__)

VISION_PROMPT = (
    "You review images attached to social media replies. "
    "Decide whether the image is a real photo or picture that matches the reply text "
    "and contains nothing offensive. "
    'Answer ONLY with JSON: {"isValid": true|false, "message": "<one short sentence>"}.'
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class VisionClient:
    name = "vision"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def validate_image(self, image_url: str, text: str = "") -> Verdict:
        if not self.api_key:
            raise CollaboratorError(self.name, "no API key configured (REPLYPROOF_VISION_API_KEY)")
        url = f"{self.base_url}/chat/completions"
        user_content = [
            {"type": "text", "text": f"Reply text: {text.strip() or '(none)'}"},
            {"type": "image_url", "image_url": {"url": image_url}},
        ]
        try:
            r = self.session.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": VISION_PROMPT},
                        {"role": "user", "content": user_content},
                    ],
                    "max_tokens": 200,
                    "temperature": 0,
                },
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise CollaboratorError(self.name, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise CollaboratorError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(self.name, "response was not JSON") from e
        content = (data.get("choices") or [{}])[0].get("message", {}).get("content", "")
        return parse_verdict(content)


def parse_verdict(content: str) -> Verdict:
    """Parse the model answer. Tolerates markdown fences around the JSON."""
    if not isinstance(content, str) or not content.strip():
        raise CollaboratorError(VisionClient.name, "empty model response")
    m = _JSON_OBJECT_RE.search(content)
    if not m:
        raise CollaboratorError(VisionClient.name, f"no JSON verdict in response: {content[:80]}")
    try:
        obj = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise CollaboratorError(VisionClient.name, f"bad JSON verdict: {e}") from e
    is_valid = obj.get("isValid", obj.get("is_valid"))
    if not isinstance(is_valid, bool):
        raise CollaboratorError(VisionClient.name, "verdict is missing boolean isValid")
    message = obj.get("message")
    return Verdict(is_valid=is_valid, message=str(message) if message else None)
