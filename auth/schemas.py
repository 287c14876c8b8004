from typing import Optional

from pydantic import BaseModel

class RegisterSchema(BaseModel):
    email: str
    password: str
    student_name: Optional[str] = None
    phone: Optional[str] = None

class LoginSchema(BaseModel):
    email: str
    password: str

class RefreshRequest(BaseModel):
    refresh_token: str

class LogoutRequest(BaseModel):
    refresh_token: str

class UserPublic(BaseModel):
    user_id: int
    email: str
    student_name: Optional[str] = None
    role: str
    batch_id: Optional[int] = None
    account_status: str
