"""Body validation helpers shared by services and routers."""

from pydantic import ValidationError as PydanticValidationError

from utils.errors import ValidationError


def pydantic_message(error: PydanticValidationError) -> str:
    """First problem of a pydantic error, as `field: message`."""
    first = error.errors()[0]
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{where}: {first['msg']}" if where else first["msg"]


def parse_input(model, payload):
    """Validate `payload` against a pydantic model; unknown keys are ignored."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(pydantic_message(e))
