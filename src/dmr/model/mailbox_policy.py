from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAILBOX_MAXSIZE = 1024


class MailboxPolicyModel(BaseModel):
    """
    Per-device mailbox policy.

    queue_maxsize:
      Bounded buffer depth. When the mailbox is full the incoming message is
      dropped; messages already queued are never evicted.
    """

    model_config = ConfigDict(extra="ignore")

    queue_maxsize: int = Field(default=DEFAULT_MAILBOX_MAXSIZE, ge=1, le=100_000)
