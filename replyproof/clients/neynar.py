"""
Social API client: direct replies to a cast via Neynar.

GET /v2/farcaster/cast/conversation?identifier=<hash>&type=hash&reply_depth=1
Only conversation.cast.direct_replies is used; each reply is normalized to
Reply(author_fid, timestamp, text, embeds[url]).
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from replyproof.errors import CollaboratorError
from replyproof.schema import Embed, Reply

logger = logging.getLogger(__name__)

NEYNAR_API_URL = "https://api.neynar.com"


class NeynarClient:
    name = "neynar"

    def __init__(
        self,
        api_key: str,
        base_url: str = NEYNAR_API_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_replies(self, cast_hash: str) -> List[Reply]:
        """Direct replies to cast_hash, in API order. Raises CollaboratorError."""
        url = f"{self.base_url}/v2/farcaster/cast/conversation"
        params = {
            "identifier": cast_hash,
            "type": "hash",
            "reply_depth": 1,
            "include_chronological_parent_casts": "false",
        }
        headers = {"accept": "application/json", "api_key": self.api_key}
        try:
            r = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise CollaboratorError(self.name, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise CollaboratorError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(self.name, "response was not JSON") from e
        return parse_replies(data)


def parse_replies(data: Dict[str, Any]) -> List[Reply]:
    conversation = (data or {}).get("conversation") or {}
    raw = (conversation.get("cast") or {}).get("direct_replies") or []
    out = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        author = item.get("author") or {}
        embeds = [Embed(url=e["url"]) for e in item.get("embeds") or [] if isinstance(e, dict) and e.get("url")]
        try:
            out.append(
                Reply(
                    author_fid=str(author.get("fid", "")),
                    timestamp=item.get("timestamp"),
                    text=item.get("text") or "",
                    embeds=embeds,
                )
            )
        except ValidationError:
            logger.warning("Skipping malformed reply %s", item.get("hash"))
    return out
