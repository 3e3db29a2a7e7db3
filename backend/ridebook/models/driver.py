from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from .base import BaseModel, new_id


class Driver(BaseModel):
    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    user = relationship("User")


class VehicleType(BaseModel):
    __tablename__ = "vehicle_types"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
