from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and renders camelCase keys for the mobile client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
