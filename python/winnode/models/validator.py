"""
winnode/models/validator.py

Helpers for turning raw kubectl JSON into typed models, with errors that say
which object failed to parse.
"""

from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


def parse_object(raw: Dict[str, Any], model: Type[M]) -> M:
    """
    Validate one API object against its model.

    Raises:
        ValueError: Naming the kind and name of the object that failed validation.
    """
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        meta = raw.get("metadata", {}) if isinstance(raw, dict) else {}
        raise ValueError(
            f"Invalid {raw.get('kind', model.__name__)} '{meta.get('name', '')}': {e}"
        ) from e
