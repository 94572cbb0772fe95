"""Strict JSON request-body decoding."""

import json
from typing import TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from transcript_pipeline.errors import BodyTooLarge, UnsupportedMediaType, ValidationError

MAX_BODY_BYTES = 1024 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)

_TYPE_ERRORS = ("_type", "_parsing")


def check_content_type(content_type: str | None) -> None:
    """An absent Content-Type is accepted; anything other than application/json is not."""
    if not content_type:
        return
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != "application/json":
        raise UnsupportedMediaType("Content-Type header is not application/json")


def _describe(error: dict) -> str:
    field = ".".join(str(part) for part in error["loc"])
    if error["type"].endswith(_TYPE_ERRORS):
        return f"Request body contains an invalid value for the {json.dumps(field)} field"
    return f"Field validation for {field!r} failed: {error['msg']}"


def parse_json_body(body: bytes, model: type[ModelT]) -> ModelT:
    """Decode exactly one JSON object into `model`, rejecting unknown fields."""
    if len(body) > MAX_BODY_BYTES:
        raise BodyTooLarge("Request body must not be larger than 1MB")

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"Request body contains badly-formed JSON (at position {e.start})", cause=e) from e

    start = len(text) - len(text.lstrip())
    if start == len(text):
        raise ValidationError("Request body must not be empty")

    try:
        data, end = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError as e:
        if e.pos >= len(text):
            raise ValidationError("Request body contains badly-formed JSON", cause=e) from e
        raise ValidationError(f"Request body contains badly-formed JSON (at position {e.pos})", cause=e) from e

    if text[end:].strip():
        raise ValidationError("Request body must only contain a single JSON object")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    for field in data:
        if field not in model.model_fields:
            raise ValidationError(f"Request body contains unknown field {json.dumps(field)}")

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e.errors()[0]), cause=e) from e


async def decode_json_body(request: Request, model: type[ModelT]) -> ModelT:
    """Read the request body (at most 1MB) and decode it into `model`."""
    check_content_type(request.headers.get("content-type"))

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_BYTES:
        raise BodyTooLarge("Request body must not be larger than 1MB")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > MAX_BODY_BYTES:
            raise BodyTooLarge("Request body must not be larger than 1MB")

    return parse_json_body(bytes(body), model)
