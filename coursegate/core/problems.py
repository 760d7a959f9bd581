from collections.abc import Mapping

from fastapi.responses import JSONResponse


ERROR_TYPE_BASE = "https://coursegate.dev/errors/"


def problem_response(
    status: int,
    title: str,
    detail: str,
    type_: str = "about:blank",
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        media_type="application/problem+json",
        headers=dict(headers) if headers else None,
        content={
            "type": type_,
            "title": title,
            "status": status,
            "detail": detail,
        },
    )
