"""
Custom exceptions and error handlers
"""

from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError


class ParameterValidationError(HTTPException):
    """Malformed query parameters (bad region, date, ...)"""

    def __init__(
        self,
        parameters: list[dict[str, str]],
        detail: str = "Invalid parameters",
    ):
        self.parameters = parameters
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    @property
    def code(self) -> str:
        names = {p["parameter"] for p in self.parameters}
        if len(names) == 1:
            return f"INVALID_{names.pop().upper()}"
        return "INVALID_PARAMETERS"

    def to_body(self) -> dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.detail,
                "parameters": self.parameters,
            },
        }

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ParameterValidationError":
        """Convert a pydantic validation error into one entry per bad parameter."""
        parameters = []
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ())]
            parameters.append(
                {
                    "parameter": ".".join(loc) or "query",
                    "message": error.get("msg", "invalid value"),
                }
            )
        names = ", ".join(p["parameter"] for p in parameters)
        return cls(parameters, detail=f"Invalid value for parameter(s): {names}")


async def parameter_error_handler(
    request: Request, exc: ParameterValidationError
) -> JSONResponse:
    logger.info(f"Rejected {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unexpected error handling {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "ok": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        },
    )
