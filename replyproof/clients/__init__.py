"""
Collaborator clients: social API (Neynar), vision model, chain provider.
"""

from dataclasses import dataclass

from replyproof.clients.chain import ChainClient
from replyproof.clients.neynar import NeynarClient
from replyproof.clients.vision import VisionClient
from replyproof.config import Settings


@dataclass
class Collaborators:
    social: NeynarClient
    vision: VisionClient
    chain: ChainClient


def build_collaborators(settings: Settings) -> Collaborators:
    """Single entry point: clients configured from Settings."""
    return Collaborators(
        social=NeynarClient(settings.neynar_api_key, settings.neynar_api_url, timeout=settings.http_timeout),
        vision=VisionClient(
            settings.vision_api_key,
            settings.vision_url,
            model=settings.vision_model,
            timeout=settings.vision_timeout,
        ),
        chain=ChainClient.from_settings(settings),
    )


__all__ = [
    "ChainClient",
    "NeynarClient",
    "VisionClient",
    "Collaborators",
    "build_collaborators",
]
