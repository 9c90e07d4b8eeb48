from typing import NewType, Optional

# Authenticated caller; every read and write is scoped to it.
OwnerId = NewType("OwnerId", int)


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None
