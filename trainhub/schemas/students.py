# trainhub/schemas/students.py

from pydantic import BaseModel


class Student(BaseModel):
    id: str
    name: str
    email: str
