"""
Modèle SQLAlchemy pour la flotte de bus.

current_occupancy est un compteur explicite, modifié uniquement par
BusOccupancy (incrément conditionnel atomique, cf. services/occupancy.py).
Invariant : 0 <= current_occupancy <= capacity.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text, func

from schoolaccess.database import Base

BUS_STATUSES = {"active", "inactive", "maintenance", "out_of_service"}


class Bus(Base):
    __tablename__ = "buses"
    __table_args__ = (
        CheckConstraint("current_occupancy >= 0", name="ck_buses_occupancy_positive"),
        CheckConstraint("current_occupancy <= capacity", name="ck_buses_occupancy_capacity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_number = Column(String(50), unique=True, nullable=False, index=True)  # Ex: "BUS-001"
    bus_name = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False, default=40)
    current_occupancy = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")  # active, inactive, maintenance, out_of_service
    driver_name = Column(String(100), nullable=True)
    driver_phone = Column(String(20), nullable=True)
    route_description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
