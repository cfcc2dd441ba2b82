import secrets

from fastapi import HTTPException, Request, Response

from shortlink.config import settings

AUTH_COOKIE = "token"


def password_matches(candidate: str | None) -> bool:
    # No configured password means the admin API stays closed.
    if not settings.admin_password or not candidate:
        return False
    return secrets.compare_digest(candidate.encode(), settings.admin_password.encode())


def require_admin(request: Request) -> None:
    if not password_matches(request.cookies.get(AUTH_COOKIE)):
        raise HTTPException(status_code=401, detail="Unauthorized")


def set_auth_cookie(response: Response, request: Request) -> None:
    response.set_cookie(
        AUTH_COOKIE,
        settings.admin_password,
        max_age=settings.auth_cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(AUTH_COOKIE, path="/", httponly=True, samesite="lax")
