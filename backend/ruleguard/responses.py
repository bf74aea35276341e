# backend/ruleguard/responses.py
"""JSON envelope shared by every API route: {"status": "ok"|"error", ...}."""
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_success(result, result_name, message=None, code=200, count=None, extra=None) -> JSONResponse:
    if result is not None and result_name is None:
        return api_error(500, "Result name not specified")

    output = {"status": "ok"}
    if result is not None:
        output[result_name] = result
    if message:
        output["message"] = message
    if count is None and isinstance(result, list):
        count = len(result)
    if count is not None:
        output["count"] = count
    if extra:
        output.update(extra)

    return JSONResponse(content=jsonable_encoder(output), status_code=code)


def api_success_noresult(code, message=None) -> JSONResponse:
    return api_success(None, None, message, code)


def api_error(status_code, message) -> JSONResponse:
    return JSONResponse(content={"status": "error", "message": message}, status_code=status_code)


def api_not_found() -> JSONResponse:
    return api_error(404, "This API route doesn't exist.")
