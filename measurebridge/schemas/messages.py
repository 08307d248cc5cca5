"""Messages emitted by measure streams.

``MeasureMessage`` is a closed union of two variants. Consumers match on the
variant type::

    match message:
        case AvailabilityChanged(availability=availability):
            ...
        case DataBatch(samples=samples):
            ...
"""

from __future__ import annotations

from typing import Annotated, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .health import Availability, DataPoint, DataType


class AvailabilityChanged(BaseModel):
    """The reported availability of ``data_type`` changed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["availability"] = "availability"
    data_type: DataType
    availability: Availability


class DataBatch(BaseModel):
    """New samples in the order the client delivered them."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data"] = "data"
    samples: Tuple[DataPoint, ...]


MeasureMessage = Annotated[Union[AvailabilityChanged, DataBatch], Field(discriminator="kind")]

_message_adapter: TypeAdapter[MeasureMessage] = TypeAdapter(MeasureMessage)


def dump_message(message: MeasureMessage) -> str:
    """Serialise a message to compact JSON."""

    return _message_adapter.dump_json(message).decode("utf-8")


def parse_message(raw: Union[str, bytes]) -> MeasureMessage:
    """Parse JSON produced by :func:`dump_message`."""

    return _message_adapter.validate_json(raw)


__all__ = ["AvailabilityChanged", "DataBatch", "MeasureMessage", "dump_message", "parse_message"]
