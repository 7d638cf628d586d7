"""Pydantic models for LAN discovery."""

import ipaddress

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import MalformedMessage


class ServerAnnouncement(BaseModel):
    """The JSON payload a host sends back to a discovery request."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    address: str = Field(alias="Address")  # dotted-quad IPv4
    port: int = Field(alias="Port", ge=0, le=65535)
    server_name: str = Field(alias="ServerName")

    @field_validator("address")
    @classmethod
    def _dotted_quad(cls, value: str) -> str:
        ipaddress.IPv4Address(value)
        return value

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def decode(cls, payload: bytes) -> "ServerAnnouncement":
        """
        Parse a discovery response.

        Raises MalformedMessage unless the payload is a well-formed
        announcement with a nonzero port.
        """
        try:
            announcement = cls.model_validate_json(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as e:
            raise MalformedMessage(f"Invalid server announcement: {e}") from e
        if announcement.port == 0:
            raise MalformedMessage("Server announcement has port 0")
        return announcement
