from typing import Any, Annotated

from bson import ObjectId
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from pydantic_core import core_schema


class ObjectIdAnnotation:
    @classmethod
    def __get_pydantic_core_schema__(
            cls, _source_type: Any, _handler: Any
    ) -> core_schema.CoreSchema:
        object_id_schema = core_schema.chain_schema(
            [
                core_schema.str_schema(),
                core_schema.no_info_plain_validator_function(cls.validate),
            ]
        )
        return core_schema.json_or_python_schema(
            json_schema=core_schema.str_schema(),
            python_schema=core_schema.union_schema(
                [core_schema.is_instance_schema(ObjectId), object_id_schema]
            ),
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda x: str(x)
            ),
        )

    @classmethod
    def validate(cls, value):
        if not ObjectId.is_valid(value):
            raise ValueError("Invalid id")

        return ObjectId(value)


PyObjectId = Annotated[ObjectId, ObjectIdAnnotation]


class MyBaseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CamelModel(MyBaseModel):
    """Wire payloads: camelCase on the socket, snake_case in python."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class UserSioSession(MyBaseModel):
    """Identity bound to a socket connection by the authenticator."""
    user_id: str
    username: str
    profile_picture: str | None = None
    # room the connection is currently joined to
    room_code: str | None = None
