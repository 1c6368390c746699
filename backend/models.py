from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date


# Auth Models
class VerifyTokenRequest(BaseModel):
    token: Optional[str] = None


# User Profile Models
class UserResponse(BaseModel):
    uid: str
    username: str
    email: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    birthdate: Optional[date] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class UserProfileUpdate(BaseModel):
    # Presence of username is checked by the handler so a missing value is a 400
    username: Optional[str] = None
    birthdate: Optional[date] = None


class LinkEmailPasswordRequest(BaseModel):
    password: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    new_password: Optional[str] = Field(None, alias="newPassword")

    class Config:
        populate_by_name = True


# Scan Models
class ScanResponse(BaseModel):
    scan_id: str = Field(..., alias="scanId")
    photo_url: str = Field(..., alias="photoUrl")
    conjunctiva_url: Optional[str] = Field(None, alias="conjunctivaUrl")
    scan_result: bool = Field(..., alias="scanResult")
    confidence: Optional[float] = None
    result_source: str = Field("model", alias="resultSource")
    scan_date: datetime = Field(..., alias="scanDate")

    class Config:
        from_attributes = True
        populate_by_name = True


# Chat Models
class ChatSessionResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    user_id: str = Field(..., alias="userId")
    title: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class ChatMessageResponse(BaseModel):
    chat_id: int = Field(..., alias="chatId")
    session_id: str = Field(..., alias="sessionId")
    sender: str
    message: str
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    timestamp: datetime
    type: str = "text"

    class Config:
        from_attributes = True
        populate_by_name = True


class ChatSessionFromScanCreate(BaseModel):
    scan_id: str = Field(..., alias="scanId")

    class Config:
        populate_by_name = True


class ChatMessageCreate(BaseModel):
    message: Optional[str] = None


class ChatSessionRename(BaseModel):
    title: Optional[str] = None
