from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    # kept as text so the service parses it like any other external timestamp
    date: str
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    category: Optional[str] = Field(default=None, max_length=100)


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    date: Optional[str] = None
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    category: Optional[str] = Field(default=None, max_length=100)


class SignupIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=72)
