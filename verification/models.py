"""Pydantic models for the item detail endpoint."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuantityAndAvailability(BaseModel):
    """Leaf of modules.VLS.listing.itemVariations[0]...quantityAndAvailability."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    availability_status: str = Field("UNKNOWN", alias="availabilityStatus")
    available_quantity: int = Field(0, alias="availableQuantity")
    sold_quantity: int = Field(0, alias="soldQuantity")
    remaining_quantity: int = Field(0, alias="remainingQuantity")

    @field_validator("availability_status", mode="before")
    @classmethod
    def _default_status(cls, v):
        return v or "UNKNOWN"

    @field_validator(
        "available_quantity", "sold_quantity", "remaining_quantity", mode="before"
    )
    @classmethod
    def _default_quantity(cls, v):
        return 0 if v is None else v


class ItemDetails(BaseModel):
    item_id: str
    availability_status: str
    available_quantity: int
    sold_quantity: int
    remaining_quantity: int

    @classmethod
    def from_quantities(cls, item_id: str, q: QuantityAndAvailability) -> "ItemDetails":
        return cls(
            item_id=item_id,
            availability_status=q.availability_status,
            available_quantity=q.available_quantity,
            sold_quantity=q.sold_quantity,
            remaining_quantity=q.remaining_quantity,
        )

    @property
    def is_in_stock(self) -> bool:
        return self.availability_status == "IN_STOCK"

    @property
    def has_stock(self) -> bool:
        return self.remaining_quantity > 0
