from __future__ import annotations

from typing import Annotated

from fastapi import Header, HTTPException, status


async def get_owner_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
  """Resolve the caller identity set by the authenticating gateway."""
  owner_id = (x_user_id or "").strip()
  if not owner_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity.")
  return owner_id
