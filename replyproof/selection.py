"""
Which reply and which embed enter the pipeline.

Reply: the newest (timestamp descending) direct reply authored by the
requesting fid. Embed: the first one whose URL passes the embed filter.
"regex" matches image links; "any" accepts any non-empty URL.
"""

import re
from typing import Iterable, Optional

from replyproof.errors import PreconditionError
from replyproof.schema import Embed, Reply

NO_REPLY_MESSAGE = "Please reply to this cast first"

IMAGE_LINKS_REGEX = re.compile(
    r"^https?://\S*?("
    r"\.(png|jpe?g|gif|webp|bmp|svg)(\?\S*)?$"
    r"|imagedelivery\.net/\S+"
    r"|i\.imgur\.com/\S+"
    r")",
    re.IGNORECASE,
)


def select_reply(replies: Iterable[Reply], user_fid) -> Reply:
    """Newest reply by user_fid. Raises PreconditionError when there is none."""
    fid = str(user_fid)
    own = sorted(
        (r for r in replies if r.author_fid == fid),
        key=lambda r: r.timestamp,
        reverse=True,
    )
    if not own or not own[0].text:
        raise PreconditionError(NO_REPLY_MESSAGE)
    return own[0]


def embed_matches(embed: Embed, policy: str = "regex") -> bool:
    url = (embed.url or "").strip()
    if not url:
        return False
    if policy == "any":
        return True
    return bool(IMAGE_LINKS_REGEX.search(url))


def select_image_embed(reply: Reply, policy: str = "regex") -> Optional[Embed]:
    """First qualifying embed, or None (the job simply does not start)."""
    for embed in reply.embeds:
        if embed_matches(embed, policy):
            return embed
    return None
