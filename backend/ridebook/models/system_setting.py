from sqlalchemy import Column, String, Text

from .base import BaseModel


class SystemSetting(BaseModel):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_by = Column(String(36), nullable=True)
