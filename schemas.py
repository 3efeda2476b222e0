"""
Database Schemas for the HAR DESIGN boutique

Request payloads are validated with these Pydantic models before anything is
written. Documents are stored in the collections named in database.py;
order lines and custom-order model details are embedded copies, never
references, so later catalog edits leave past orders untouched.
"""

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

Category = Literal["Vêtements", "Chaussures", "Accessoires", "Couture"]
OrderStatus = Literal["pending", "processing", "completed", "cancelled"]
CustomOrderStatus = Literal["pending", "in_progress", "completed", "delivered", "cancelled"]
TransactionType = Literal["entree", "sortie", "vente"]
PaymentMethod = Literal["especes", "mobile", "carte"]


class StrictText(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# ------------ Auth & User ------------
class UserCreate(StrictText):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = ""
    password: str = Field(..., min_length=6)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

class ProfileUpdate(StrictText):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None

class Session(BaseModel):
    id: str
    email: EmailStr
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    role: Literal["admin", "user"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

# ------------ Customers ------------
class CustomerCreate(StrictText):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None

class Measurements(StrictText):
    cou: str = ""
    epaule: str = ""
    poitrine: str = ""
    taille: str = ""
    hanche: str = ""
    longueur_bras: str = ""
    longueur_jambe: str = ""
    longueur_totale: str = ""
    tour_bras: str = ""
    poignet: str = ""

# ------------ Products ------------
class ProductCreate(StrictText):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: int = Field(..., ge=0, description="Price in FCFA, no subdivision")
    stock: int = Field(0, ge=0)
    category: Category
    image: Optional[str] = None

class ProductUpdate(StrictText):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[Category] = None
    image: Optional[str] = None

class CoutureModelCreate(StrictText):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: int = Field(..., ge=0, description="Base price, adjusted per custom order")
    image: Optional[str] = None

class CoutureModelUpdate(StrictText):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None

# ------------ Cart & Orders ------------
class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)

class CartQuote(BaseModel):
    items: List[CartItem]

class ContactInfo(StrictText):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)

class CheckoutRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    contact: ContactInfo

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

# ------------ Custom orders ------------
class CustomOrderCreate(StrictText):
    customer_id: Optional[str] = None
    new_customer: Optional[CustomerCreate] = None
    model_id: str
    price: Optional[int] = Field(None, ge=0, description="Defaults to the model price")
    deposit: int = Field(0, ge=0)
    deadline: date
    fabric_details: str = ""
    notes: str = ""
    measurements_taken: bool = True
    payment_method: PaymentMethod = "especes"

    @model_validator(mode="after")
    def one_customer(self):
        if bool(self.customer_id) == bool(self.new_customer):
            raise ValueError("Provide either customer_id or new_customer")
        return self

class CustomOrderStatusUpdate(BaseModel):
    status: CustomOrderStatus

# ------------ Cash ledger ------------
class TransactionCreate(StrictText):
    type: Literal["entree", "sortie"]
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    payment_method: PaymentMethod = "especes"
