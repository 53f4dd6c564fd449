# visibility.py — Author projection for cards and comments
#
# Anonymous retros hide who wrote a card or comment from everyone but the
# author, in every phase. The `is_own` flag is always derived so the author
# can still manage their own content.
from typing import Mapping, Optional

from pydantic import BaseModel

from membership import UserDisplay

ANONYMOUS_NAME = "Anonymous"


class AuthorOut(BaseModel):
    id: Optional[str] = None
    name: str
    avatar_url: Optional[str] = None
    is_anonymous: bool = False


def project_author(
    author_id: str,
    is_anonymous: bool,
    viewer_id: str,
    displays: Mapping[str, UserDisplay],
) -> AuthorOut:
    """Decide which authorship fields `viewer_id` may see"""
    if is_anonymous and author_id != viewer_id:
        return AuthorOut(name=ANONYMOUS_NAME, is_anonymous=True)

    display = displays.get(author_id) or UserDisplay(name="Unknown user")
    return AuthorOut(id=author_id, name=display.name, avatar_url=display.avatar_url)
