from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CourseStatus = Literal["draft", "published", "archived"]


class Chapter(BaseModel):
    name: str = Field(min_length=1)
    topics: List[str] = []
    learning_objectives: List[str] = []


class CourseCreate(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    description: str = ""
    subject: str = Field(min_length=1, max_length=100)
    grade: int = Field(ge=1, le=12)
    chapters: List[Chapter] = []
    topics: List[str] = []
    status: CourseStatus = "published"


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = None
    subject: Optional[str] = None
    grade: Optional[int] = Field(default=None, ge=1, le=12)
    chapters: Optional[List[Chapter]] = None
    topics: Optional[List[str]] = None
    status: Optional[CourseStatus] = None


class CourseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    title: str
    description: str
    subject: str
    grade: int
    chapters: list
    topics: list
    status: str
    created_by: int
    created_at: Optional[datetime] = None
