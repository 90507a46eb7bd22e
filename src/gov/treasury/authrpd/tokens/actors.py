from enum import Enum
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing_extensions import Annotated


class ActorType(str, Enum):
    MEMBER = "MEMBER"
    CLIENT = "CLIENT"


class BaseActor(BaseModel):
    """Fields shared by every actor presented for issuance.

    ``region_code`` is optional at the type level so that an incomplete record
    reaches the issuer and fails there with ``ActorIncomplete``.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True, frozen=True)

    id: str
    region_code: Optional[str] = None
    role: Optional[str] = None
    organization_code: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"{self.actor_type}:{self.id}"


class MemberActor(BaseActor):
    """A human user of the platform."""

    actor_type: Literal["MEMBER"] = "MEMBER"


class ClientActor(BaseActor):
    """A machine client (integration partner, service account)."""

    actor_type: Literal["CLIENT"] = "CLIENT"


Actor = Annotated[Union[MemberActor, ClientActor], Field(discriminator="actor_type")]

ActorTypeAdapter: TypeAdapter[Actor] = TypeAdapter(Actor)


def parse_actor(data: Mapping[str, Any]) -> Union[MemberActor, ClientActor]:
    """
    Build an actor from a directory record.

    Accepts ``type`` as an alias for ``actor_type`` since that is how actor
    directories usually name the column.
    """
    values = dict(data)
    if "actor_type" not in values and "type" in values:
        values["actor_type"] = values.pop("type")
    if isinstance(values.get("actor_type"), ActorType):
        values["actor_type"] = values["actor_type"].value
    return ActorTypeAdapter.validate_python(values)


def actor_type_value(actor_type: Union[ActorType, str]) -> str:
    """Plain string form of an actor type, as stored in the database."""
    if isinstance(actor_type, ActorType):
        return actor_type.value
    return str(actor_type)
