"""Base schema classes.

Request bodies accept both camelCase (as the web client sends them) and
snake_case. Responses keep the field names shown in the models.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request schemas. Accepts camelCase or snake_case keys."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }


class ORMModel(BaseModel):
    """Base for response schemas read from SQLAlchemy rows."""
    model_config = {
        "from_attributes": True,
        "protected_namespaces": (),
    }
