from __future__ import annotations

import re
from uuid import uuid4


_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]{1,24}$")

NODE_ID_PREFIX = "node"
EDGE_ID_PREFIX = "edge"
DECISION_ID_PREFIX = "dec"
DECISION_EVENT_ID_PREFIX = "devt"


def new_prefixed_id(prefix: str) -> str:
    """Generate a new stable-looking ID using a short prefix.

    Format: `{prefix}_{uuidhex}`.
    """
    if not _PREFIX_RE.fullmatch(prefix):
        raise ValueError(
            "Invalid id prefix. Expected lowercase letters/digits, 2-25 chars, "
            "starting with a letter."
        )
    return f"{prefix}_{uuid4().hex}"
