from typing import List, Optional

from pydantic import BaseModel, Field


class PartIn(BaseModel):
    ecs_serial: Optional[str] = Field(None, description="Leave empty to allocate the next serial")
    part: Optional[str] = None
    process: Optional[str] = None
    filter_pn: Optional[str] = None
    po_number: Optional[str] = None
    mileage: Optional[str] = None
    unit_vin: Optional[str] = None
    gasket_clamps: Optional[str] = None
    ec: Optional[str] = None
    eg: Optional[str] = None
    ek: Optional[str] = None


class JobCreate(BaseModel):
    customer_name: str = Field(..., description="Customer")
    shop_name: str = Field(..., description="Shop, e.g. ECS Nashville (sets the job id shop code)")
    arrival_path: str = Field("pickup", description="pickup | direct | shop")
    contact_name: Optional[str] = None
    contact_number: Optional[str] = None
    po_number: Optional[str] = None
    customer_ship_to: Optional[str] = None
    shop_handoff: Optional[str] = Field(None, description="Technician address for the service leg")
    customer_instructions: Optional[str] = None
    pickup_address: Optional[str] = None
    pickup_driver_email: Optional[str] = None
    pickup_notes: Optional[str] = None
    delivery_address: Optional[str] = None
    parts: List[PartIn] = Field(default_factory=list)


class JobUpdate(BaseModel):
    customer_name: Optional[str] = None
    contact_name: Optional[str] = None
    contact_number: Optional[str] = None
    po_number: Optional[str] = None
    customer_ship_to: Optional[str] = None
    shop_handoff: Optional[str] = None
    customer_instructions: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None


class DispatchPickupRequest(BaseModel):
    driver_email: str
    notes: Optional[str] = None


class DispatchDeliveryRequest(BaseModel):
    driver_email: str
    address: Optional[str] = None
    notes: Optional[str] = None
    order_numbers: List[str] = Field(default_factory=list, max_length=5)


class MarkPickedUpRequest(BaseModel):
    item_count: Optional[int] = Field(None, ge=0)


class CheckInRequest(BaseModel):
    technician: Optional[str] = None
    shop_handoff: Optional[str] = None
    dispatch_service: bool = True
    parts: List[PartIn] = Field(default_factory=list)


class StartServiceRequest(BaseModel):
    technician: Optional[str] = None


class MarkDeliveredRequest(BaseModel):
    delivery_method: Optional[str] = None
    order_numbers: List[str] = Field(default_factory=list, max_length=5)


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class NoteCreate(BaseModel):
    text: str = Field(..., min_length=1)


class CommentCreate(BaseModel):
    author: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class PartUpdate(BaseModel):
    part: Optional[str] = None
    process: Optional[str] = None
    filter_pn: Optional[str] = None
    po_number: Optional[str] = None
    mileage: Optional[str] = None
    unit_vin: Optional[str] = None
    gasket_clamps: Optional[str] = None
    ec: Optional[str] = None
    eg: Optional[str] = None
    ek: Optional[str] = None
