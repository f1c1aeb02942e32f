from pydantic import BaseModel


class LoginRequest(BaseModel):
    email: str
    password: str


class AttendanceOpenRequest(BaseModel):
    duration_seconds: int | None = None


class AttendanceMarkRequest(BaseModel):
    student_name: str
    date: str | None = None


class DeadlineRequest(BaseModel):
    date: str
    description: str = ''


class SubmissionRequest(BaseModel):
    student_name: str
    content: str


class NoticeRequest(BaseModel):
    text: str


class ParentMessageRequest(BaseModel):
    child_name: str
    message: str


class ParentReplyRequest(BaseModel):
    reply: str


class ClassInfoRequest(BaseModel):
    class_name: str
    strength: int | str = 0
