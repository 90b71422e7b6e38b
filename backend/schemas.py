# schemas.py — Shared pydantic base for request bodies
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts camelCase JSON keys (the web client's convention) or snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
