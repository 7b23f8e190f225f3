"""
Frame views. Every response is either an info view {text, actions[]} or an
error view {message, resetAction}.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ENTRY_TEXT = "Press button to display your reply to this cast"
GENERIC_ERROR = "Something went wrong"

ActionKind = Literal["post", "tx", "link", "reset"]


class Action(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str
    kind: ActionKind = "post"
    target: Optional[str] = Field(None, description="Path to post to, tx descriptor path, or link URL")
    value: Optional[str] = Field(None, description="Button value sent back with the next frame request")
    post_url: Optional[str] = Field(None, alias="postUrl", description="tx only: where to post after signing")


class InfoView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["info"] = "info"
    text: str
    actions: List[Action] = Field(default_factory=list)
    post_url: Optional[str] = Field(None, alias="postUrl")
    state: Optional[str] = Field(None, description="Opaque frame state (the current jobId)")


class ErrorView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["error"] = "error"
    message: str
    reset_action: Action = Field(..., alias="resetAction")


View = Union[InfoView, ErrorView]


def reset_action() -> Action:
    return Action(label="Reset", kind="reset", target="/", value="RESET")


def retry_action(label: str, target: str, value: Optional[str] = None) -> Action:
    return Action(label=label, kind="post", target=target, value=value)


def link_action(label: str, url: str) -> Action:
    return Action(label=label, kind="link", target=url)


def info_screen(
    text: str,
    actions: List[Action],
    post_url: Optional[str] = None,
    state: Optional[str] = None,
) -> InfoView:
    return InfoView(text=text, actions=actions, post_url=post_url, state=state)


def error_screen(message: str) -> ErrorView:
    return ErrorView(message=message, reset_action=reset_action())


def entry_screen() -> InfoView:
    return info_screen(ENTRY_TEXT, [retry_action("Fetch text", "/", value="CAST_TEXT")], post_url="/")


def dump(view: View) -> dict:
    return view.model_dump(by_alias=True, exclude_none=True)
