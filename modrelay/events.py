from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from .errors import ValidationError
from .sessions import Stage


class ButtonAction(enum.Enum):
    CONTINUE = "continue"
    CONFIRM = "confirm"
    CANCEL = "cancel"


class ReviewDecision(enum.Enum):
    APPROVE = "approve"
    DENY = "deny"
    CONTACT = "contact"


@dataclass(frozen=True)
class WizardStart:
    owner_id: int


@dataclass(frozen=True)
class StageSubmit:
    owner_id: int
    actor_id: int
    stage: Stage
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ButtonClick:
    owner_id: int
    actor_id: int
    action: ButtonAction
    # only CONTINUE carries the stage whose form should open
    stage: Optional[Stage] = None


@dataclass(frozen=True)
class ModSubmit:
    decision: ReviewDecision
    applicant_id: int
    moderator_id: int = 0


WizardEvent = Union[WizardStart, StageSubmit, ButtonClick]


# =========================================================
# Component IDs
# =========================================================
GIVEAWAY_PREFIX = "giveaway"
REVIEW_PREFIX = "modapp"


def cid_continue(owner_id: int, stage: Stage) -> str:
    return f"{GIVEAWAY_PREFIX}:{ButtonAction.CONTINUE.value}:{owner_id}:{stage.value}"


def cid_confirm(owner_id: int) -> str:
    return f"{GIVEAWAY_PREFIX}:{ButtonAction.CONFIRM.value}:{owner_id}"


def cid_cancel(owner_id: int) -> str:
    return f"{GIVEAWAY_PREFIX}:{ButtonAction.CANCEL.value}:{owner_id}"


def cid_review(decision: ReviewDecision, applicant_id: int) -> str:
    return f"{REVIEW_PREFIX}:{decision.value}:{applicant_id}"


def _snowflake(raw: str, custom_id: str) -> int:
    if not raw.isdecimal() or not raw.isascii():
        raise ValidationError(f"Malformed component id: {custom_id}")
    return int(raw)


def decode_custom_id(custom_id: str, actor_id: int) -> Optional[Union[ButtonClick, ModSubmit]]:
    """Turn a component custom id into a typed event.

    Returns None for ids this bot does not own; raises ValidationError for
    ids with our prefix that do not parse.
    """
    parts = (custom_id or "").split(":")
    prefix = parts[0]

    if prefix == GIVEAWAY_PREFIX:
        if len(parts) < 3:
            raise ValidationError(f"Malformed component id: {custom_id}")
        try:
            action = ButtonAction(parts[1])
        except ValueError:
            raise ValidationError(f"Unknown giveaway action: {parts[1]}") from None
        owner_id = _snowflake(parts[2], custom_id)
        stage = None
        if action is ButtonAction.CONTINUE:
            if len(parts) != 4:
                raise ValidationError(f"Malformed component id: {custom_id}")
            try:
                stage = Stage(parts[3])
            except ValueError:
                raise ValidationError(f"Unknown wizard stage: {parts[3]}") from None
        elif len(parts) != 3:
            raise ValidationError(f"Malformed component id: {custom_id}")
        return ButtonClick(owner_id=owner_id, actor_id=actor_id, action=action, stage=stage)

    if prefix == REVIEW_PREFIX:
        if len(parts) != 3:
            raise ValidationError(f"Malformed component id: {custom_id}")
        try:
            decision = ReviewDecision(parts[1])
        except ValueError:
            raise ValidationError(f"Unknown review decision: {parts[1]}") from None
        return ModSubmit(decision=decision, applicant_id=_snowflake(parts[2], custom_id), moderator_id=actor_id)

    return None
