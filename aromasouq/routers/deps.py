from fastapi import Header


def current_user_id(x_user_id: int = Header(..., alias="X-User-Id", gt=0)) -> int:
    """Acting user, resolved upstream by the gateway."""
    return x_user_id
