import logging

import pydantic
from packaging.version import parse
from pydantic.version import VERSION

logger = logging.getLogger(__name__)

version_parsed = parse(str(VERSION))

if version_parsed.major >= 2:
    PydanticVersion = 2
else:
    PydanticVersion = 1

logger.debug(f"bookforge running on Pydantic {VERSION}")


BaseModel: type = pydantic.BaseModel
Field = pydantic.Field
PrivateAttr = pydantic.PrivateAttr


# Settings shared by every document model: populate by python name or by the
# Firestore alias, and store enum members as their plain values.
if PydanticVersion == 2:
    MODEL_CONFIG = pydantic.ConfigDict(populate_by_name=True, use_enum_values=True)
else:
    MODEL_CONFIG = {
        "allow_population_by_field_name": True,
        "use_enum_values": True,
    }


# Pydantic V1: __fields__; Pydantic V2: model_fields
def get_model_fields(cls: type) -> dict:
    if PydanticVersion == 1:
        return getattr(cls, "__fields__", {})
    return getattr(cls, "model_fields", {})  # type: ignore[attr-defined]


def model_dump_compat(instance, **kwargs) -> dict:
    """``model_dump`` on V2, ``dict`` on V1."""
    if PydanticVersion == 2:
        return instance.model_dump(**kwargs)
    return instance.dict(**kwargs)


def model_copy_compat(instance, deep: bool = False):
    """``model_copy`` on V2, ``copy`` on V1. Private attributes are kept."""
    if PydanticVersion == 2:
        return instance.model_copy(deep=deep)
    return instance.copy(deep=deep)


__all__ = [
    "BaseModel",
    "Field",
    "PrivateAttr",
    "MODEL_CONFIG",
    "get_model_fields",
    "model_dump_compat",
    "model_copy_compat",
    "PydanticVersion",
]
