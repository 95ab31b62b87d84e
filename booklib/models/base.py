"""Shared base for models serialized over the HTTP API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Model whose JSON form uses camelCase keys (``conversationId``, ``topK``).

    Python code keeps snake_case attribute names; both spellings are accepted
    on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
