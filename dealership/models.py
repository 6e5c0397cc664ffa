import uuid
from datetime import datetime

from sqlalchemy.orm import relationship

from dealership.extensions import db


def _new_id() -> str:
    return str(uuid.uuid4())


class Vehicle(db.Model):
    """
    A vehicle listing, keyed for webhooks by the CRM's ``crmid``.
    is_published=False is the "sold" soft-delete marker.
    """

    __tablename__ = "vehicles"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    crmid = db.Column(db.String(128), unique=True, nullable=True, index=True)
    external_id = db.Column(db.String(128), nullable=True)
    is_published = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Nullable at the DB level: a "mark as sold" upsert may create a bare row
    slug = db.Column(db.String(255), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=True)
    brand = db.Column(db.String(120), nullable=True)
    model = db.Column(db.String(120), nullable=True)
    year = db.Column(db.Integer, nullable=True)
    price = db.Column(db.Integer, nullable=True)
    km = db.Column(db.Integer, nullable=True)
    gear_type = db.Column(db.String(50), nullable=True)
    fuel_type = db.Column(db.String(50), nullable=True)
    categories = db.Column(db.JSON, nullable=False, default=list)
    hand = db.Column(db.Integer, nullable=True)
    condition = db.Column(db.String(50), nullable=True)
    main_image_url = db.Column(db.Text, nullable=True)
    short_description = db.Column(db.Text, nullable=True)
    raw_data = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    images = relationship(
        "VehicleImage",
        cascade="all, delete-orphan",
        backref="vehicle",
        lazy=True,
        order_by="VehicleImage.position",
    )

    @property
    def id_suffix(self) -> str:
        """Short stable suffix of the internal id (used in URLs and storage paths)."""
        return id_suffix(self.id)

    def to_dict(self, include_images: bool = True) -> dict:
        data = {
            "id": self.id,
            "crmid": self.crmid,
            "external_id": self.external_id,
            "is_published": self.is_published,
            "slug": self.slug,
            "title": self.title,
            "brand": self.brand,
            "model": self.model,
            "year": self.year,
            "price": self.price,
            "km": self.km,
            "gear_type": self.gear_type,
            "fuel_type": self.fuel_type,
            "categories": list(self.categories or []),
            "hand": self.hand,
            "condition": self.condition,
            "main_image_url": self.main_image_url,
            "short_description": self.short_description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_images:
            data["images"] = [img.to_dict() for img in self.images]
        return data

    def __repr__(self):
        return f"<Vehicle id={self.id} crmid={self.crmid} published={self.is_published}>"


class VehicleImage(db.Model):
    """
    Stored image of a vehicle. image_url always points at our own storage.
    """

    __tablename__ = "vehicle_images"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    vehicle_id = db.Column(
        db.String(36),
        db.ForeignKey("vehicles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    image_url = db.Column(db.Text, nullable=False)
    position = db.Column(db.Integer, nullable=False)
    alt_text = db.Column(db.String(255), nullable=True)
    uploaded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("vehicle_id", "position", name="uq_vehicle_image_position"),
        db.CheckConstraint("position >= 1", name="ck_vehicle_image_position_min"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "image_url": self.image_url,
            "position": self.position,
            "alt_text": self.alt_text,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<VehicleImage vehicle_id={self.vehicle_id} position={self.position}>"


ID_SUFFIX_LENGTH = 12


def id_suffix(vehicle_id: str) -> str:
    return str(vehicle_id)[-ID_SUFFIX_LENGTH:]
