"""Pydantic schemas for the rooms REST API."""

from __future__ import annotations

from pydantic import BaseModel


class RoomActivityDTO(BaseModel):
    room: str
    number_of_messages: int
    subscribers: int = 0


class DeletedResponse(BaseModel):
    deleted: int
