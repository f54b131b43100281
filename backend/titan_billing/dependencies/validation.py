from __future__ import annotations

import json
from typing import TypeVar

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def parse_json_body(request: Request, model: type[ModelT], *, message: str = "Invalid request data") -> ModelT:
    """
    Parse the body into ``model``; malformed JSON or invalid fields become a 400
    rather than FastAPI's default 422.
    """
    try:
        body = json.loads(await request.body() or b"null")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    try:
        return model.model_validate(body)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": message, "details": {"errors": jsonable_encoder(errors)}},
        )
