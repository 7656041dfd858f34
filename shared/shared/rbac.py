from fastapi import HTTPException, status

ROLES = ("user", "provider", "admin")


def token_roles(payload: dict) -> set[str]:
    roles = payload.get("roles")
    if not isinstance(roles, list):
        return set()
    return {str(r).lower() for r in roles}


def has_role(payload: dict, role: str) -> bool:
    return role.lower() in token_roles(payload)


def require_role(payload: dict, allowed_roles: list[str]):
    """403 unless the token carries at least one of allowed_roles."""
    roles = token_roles(payload)
    if not roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Roles missing in token")

    if roles.isdisjoint(r.lower() for r in allowed_roles):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access forbidden for this role")
