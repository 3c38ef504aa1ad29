"""
Request schemas for the marketplace API.

Every payload is validated here before any store access. Field names are
snake_case in Python and in stored documents; clients send camelCase,
mapped through the alias generator.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"

ObjectIdStr = Annotated[str, Field(pattern=OBJECT_ID_PATTERN)]

BikeCondition = Literal["excellent", "good", "fair", "poor"]
BikeStatus = Literal["active", "sold", "pending", "inactive", "available"]
OrderStatus = Literal["pending", "confirmed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "partial", "failed", "refunded"]
PaymentMethod = Literal["Bkash", "Cash", "Bank Transfer"]
ExpenseType = Literal[
    "repair",
    "maintenance",
    "transportation",
    "fuel",
    "insurance",
    "registration",
    "parts",
    "labor",
    "other",
]
LocationStatus = Literal["active", "inactive"]
SortOrder = Literal["asc", "desc"]


class Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


# --- Shared pieces ---


class PartnerShareInput(Schema):
    partner_id: ObjectIdStr
    percentage: float = Field(ge=0, le=100)


class PersonDocs(Schema):
    nid: str = Field(min_length=1)
    driving_license: str = Field(min_length=1)
    proof_of_address: Optional[str] = None


class SellerInfo(Schema):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[str] = None
    address: Optional[str] = None


class BikeDocs(Schema):
    tax_token: Optional[str] = None
    registration: Optional[str] = None
    insurance: Optional[str] = None
    fitness_report: Optional[str] = None


class Specifications(Schema):
    engine: Optional[str] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    displacement: Optional[str] = None
    max_power: Optional[str] = None
    max_torque: Optional[str] = None
    top_speed: Optional[str] = None
    fuel_tank: Optional[str] = None
    weight: Optional[str] = None


def _check_partner_total(partners: Optional[List[PartnerShareInput]]):
    if partners is None:
        return partners
    total = sum(partner.percentage for partner in partners)
    if total > 100:
        raise ValueError("Total partner percentage cannot exceed 100%")
    seen = set()
    for partner in partners:
        if partner.partner_id in seen:
            raise ValueError("Each partner can only hold one share in a bike")
        seen.add(partner.partner_id)
    return partners


# --- Bikes ---


class BikeCreate(Schema):
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=2000)
    brand: str = Field(min_length=2, max_length=50)
    model: str = Field(min_length=1, max_length=50)
    year: int = Field(ge=1900)
    condition: BikeCondition
    mileage: float = Field(ge=0, le=1_000_000)
    price: float = Field(ge=1, le=10_000_000)
    purchase_price: float = Field(ge=0)
    purchase_date: Optional[datetime] = None
    my_share: Optional[float] = Field(default=None, ge=0)
    partners: List[PartnerShareInput] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    features: List[Annotated[str, Field(min_length=1)]] = Field(default_factory=list)
    available_docs: List[Annotated[str, Field(min_length=1)]] = Field(default_factory=list)
    specifications: Specifications = Field(default_factory=Specifications)
    seller_info: Optional[SellerInfo] = None
    seller_available_docs: Optional[PersonDocs] = None
    bike_available_docs: Optional[BikeDocs] = None
    location: Optional[str] = None
    status: BikeStatus = "active"
    is_featured: bool = False

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, value: int) -> int:
        if value > datetime.utcnow().year + 1:
            raise ValueError("Year cannot be in the future")
        return value

    @field_validator("partners")
    @classmethod
    def partner_total_within_limit(cls, value):
        return _check_partner_total(value)


class BikeFullUpdate(Schema):
    update_type: Literal["full"] = "full"
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    brand: Optional[str] = Field(default=None, min_length=2, max_length=50)
    model: Optional[str] = Field(default=None, min_length=1, max_length=50)
    year: Optional[int] = Field(default=None, ge=1900)
    condition: Optional[BikeCondition] = None
    mileage: Optional[float] = Field(default=None, ge=0, le=1_000_000)
    price: Optional[float] = Field(default=None, ge=1, le=10_000_000)
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    my_share: Optional[float] = Field(default=None, ge=0)
    partners: Optional[List[PartnerShareInput]] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None
    available_docs: Optional[List[str]] = None
    specifications: Optional[Specifications] = None
    seller_info: Optional[SellerInfo] = None
    seller_available_docs: Optional[PersonDocs] = None
    bike_available_docs: Optional[BikeDocs] = None
    location: Optional[str] = None
    status: Optional[BikeStatus] = None
    is_featured: Optional[bool] = None

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > datetime.utcnow().year + 1:
            raise ValueError("Year cannot be in the future")
        return value

    @field_validator("partners")
    @classmethod
    def partner_total_within_limit(cls, value):
        return _check_partner_total(value)


class BikeStatusUpdate(Schema):
    update_type: Literal["status"]
    status: BikeStatus


BikeUpdate = Annotated[
    Union[BikeFullUpdate, BikeStatusUpdate], Field(discriminator="update_type")
]


class BikeQuery(Schema):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=12, ge=1, le=100)
    brand: Optional[str] = None
    condition: Optional[BikeCondition] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    search: Optional[str] = None
    status: Optional[BikeStatus] = None
    sort_by: Literal[
        "createdAt", "updatedAt", "price", "year", "mileage", "title", "brand", "model"
    ] = "createdAt"
    sort_order: SortOrder = "desc"


class AdminBikeQuery(BikeQuery):
    limit: int = Field(default=50, ge=1, le=100)


# --- Partners ---


class PartnerCreate(Schema):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: str = Field(min_length=1)
    documents: PersonDocs
    profile: Optional[str] = None


class PartnerFullUpdate(Schema):
    update_type: Literal["full"] = "full"
    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: Optional[str] = Field(default=None, min_length=1)
    documents: Optional[PersonDocs] = None
    profile: Optional[str] = None


class PartnerActiveUpdate(Schema):
    update_type: Literal["active"]
    is_active: bool


PartnerUpdate = Annotated[
    Union[PartnerFullUpdate, PartnerActiveUpdate], Field(discriminator="update_type")
]


class PartnerQuery(Schema):
    search: Optional[str] = None
    is_active: Optional[bool] = None
    sort_by: Literal["createdAt", "updatedAt", "name", "phone", "email"] = "createdAt"
    sort_order: SortOrder = "desc"


# --- Purchase orders ---


class PartnerProfitInput(Schema):
    partner_id: ObjectIdStr
    profit: float = Field(ge=0)
    share_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class PurchaseOrderCreate(Schema):
    bike_id: ObjectIdStr
    buyer_name: str = Field(min_length=1, max_length=100)
    buyer_phone: str = Field(min_length=1, max_length=20)
    buyer_email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    buyer_address: Optional[str] = Field(default=None, max_length=500)
    buyer_docs: PersonDocs
    amount: float = Field(ge=1)
    profit: float = Field(ge=0)
    partners_profit: List[PartnerProfitInput] = Field(default_factory=list)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod
    due_amount: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class PurchaseOrderFullUpdate(Schema):
    update_type: Literal["full"] = "full"
    bike_id: Optional[ObjectIdStr] = None
    buyer_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    buyer_phone: Optional[str] = Field(default=None, min_length=1, max_length=20)
    buyer_email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    buyer_address: Optional[str] = Field(default=None, max_length=500)
    buyer_docs: Optional[PersonDocs] = None
    amount: Optional[float] = Field(default=None, ge=1)
    profit: Optional[float] = Field(default=None, ge=0)
    partners_profit: Optional[List[PartnerProfitInput]] = None
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    due_amount: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class PurchaseOrderStatusUpdate(Schema):
    update_type: Literal["status"]
    status: OrderStatus


class PurchaseOrderPaymentUpdate(Schema):
    update_type: Literal["payment"]
    payment_status: PaymentStatus
    due_amount: Optional[float] = Field(default=None, ge=0)


PurchaseOrderUpdate = Annotated[
    Union[PurchaseOrderFullUpdate, PurchaseOrderStatusUpdate, PurchaseOrderPaymentUpdate],
    Field(discriminator="update_type"),
]


class PurchaseOrderQuery(Schema):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    bike_id: Optional[ObjectIdStr] = None
    partner_id: Optional[ObjectIdStr] = None
    search: Optional[str] = None
    sort_by: Literal[
        "createdAt", "updatedAt", "amount", "profit", "buyerName", "status", "paymentStatus"
    ] = "createdAt"
    sort_order: SortOrder = "desc"


# --- Expenses ---


class ExpenseCreate(Schema):
    bike_id: ObjectIdStr
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    type: ExpenseType
    amount: float = Field(gt=0)
    date: datetime
    adjust_bike_price: bool = False
    adjust_partner_shares: bool = False
    partner_id: Optional[ObjectIdStr] = None
    receipt_image: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ExpenseUpdate(Schema):
    bike_id: Optional[ObjectIdStr] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    type: Optional[ExpenseType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    date: Optional[datetime] = None
    adjust_bike_price: Optional[bool] = None
    adjust_partner_shares: Optional[bool] = None
    partner_id: Optional[ObjectIdStr] = None
    receipt_image: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ExpenseQuery(Schema):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    search: Optional[str] = None
    bike_id: Optional[ObjectIdStr] = None
    type: Optional[ExpenseType] = None
    sort_by: Literal["date", "amount", "createdAt", "updatedAt", "title", "type"] = "date"
    sort_order: SortOrder = "desc"


# --- Bike wash locations ---


class BikeWashLocationCreate(Schema):
    location: str = Field(min_length=1, max_length=200)
    map: str = Field(min_length=1, pattern=r"^https?://")
    price: float = Field(ge=0, le=10_000)
    features: List[Annotated[str, Field(min_length=1)]] = Field(default_factory=list)
    status: LocationStatus = "active"


class BikeWashLocationFullUpdate(Schema):
    update_type: Literal["full"] = "full"
    location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    map: Optional[str] = Field(default=None, min_length=1, pattern=r"^https?://")
    price: Optional[float] = Field(default=None, ge=0, le=10_000)
    features: Optional[List[str]] = None
    status: Optional[LocationStatus] = None


class BikeWashLocationStatusUpdate(Schema):
    update_type: Literal["status"]
    status: LocationStatus


BikeWashLocationUpdate = Annotated[
    Union[BikeWashLocationFullUpdate, BikeWashLocationStatusUpdate],
    Field(discriminator="update_type"),
]


class BikeWashLocationQuery(Schema):
    search: Optional[str] = None
    status: Optional[LocationStatus] = None
    sort_by: Literal["createdAt", "updatedAt", "location", "price"] = "createdAt"
    sort_order: SortOrder = "desc"


# --- Public info ---


class PublicInfoInput(Schema):
    phone: List[str]
    email: str = Field(min_length=1)
    available_times: List[str]
    location: str = Field(min_length=1)
    map: str = ""

    @field_validator("phone", "available_times")
    @classmethod
    def drop_blank_entries(cls, value: List[str]) -> List[str]:
        cleaned = [entry.strip() for entry in value if entry and entry.strip()]
        if not cleaned:
            raise ValueError("At least one entry is required")
        return cleaned


# --- Users ---


class RegisterInput(Schema):
    name: str = Field(min_length=1)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=6)
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class EmailInput(Schema):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class VerifyEmailInput(EmailInput):
    verification_code: str = Field(pattern=r"^\d{6}$")


class LoginInput(EmailInput):
    password: str = Field(min_length=1)


class ProfileUpdateInput(Schema):
    name: str = Field(min_length=2)
    phone: Optional[str] = None


class ChangePasswordInput(Schema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)

    @model_validator(mode="after")
    def passwords_differ(self):
        if self.current_password == self.new_password:
            raise ValueError("New password must differ from the current password")
        return self


# Query-string field names that map onto stored document keys.
SORT_FIELD_MAP = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "buyerName": "buyer_name",
    "paymentStatus": "payment_status",
}


def storage_sort_field(value: str) -> str:
    return SORT_FIELD_MAP.get(value, value)


_update_adapters: Dict[int, TypeAdapter] = {}


def validate_update(union_type, payload: Dict[str, Any]):
    """Validate a tagged update payload; an absent ``updateType`` means a full update."""
    adapter = _update_adapters.get(id(union_type))
    if adapter is None:
        adapter = _update_adapters[id(union_type)] = TypeAdapter(union_type)
    tagged = dict(payload)
    if tagged.get("updateType") is None and tagged.get("update_type") is None:
        tagged["updateType"] = "full"
    return adapter.validate_python(tagged)
