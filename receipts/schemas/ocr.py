from typing import Optional
from pydantic import BaseModel, Field, field_validator

class ExtractedReceiptData(BaseModel):
    """Fields an OCR engine is asked to return for a receipt/bill image"""
    provider: Optional[str] = Field(default=None, description="Merchant or service provider name")
    amount: Optional[float] = Field(default=None, ge=0, description="Total amount")
    date: Optional[str] = Field(default=None, description="Document date as printed or YYYY-MM-DD")
    currency: Optional[str] = Field(default=None, description="3-letter currency code")

    @field_validator('provider', 'date', mode='before')
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v or v.lower() == "null":
                return None
        return v

    @field_validator('amount', mode='before')
    def parse_amount(cls, v):
        if v is None or v == "":
            return None
        if isinstance(v, str):
            # Replace common separators: "1 234,50", "1,234.50"
            v = v.replace(' ', '').replace('\xa0', '')
            v = v.replace(',', '') if '.' in v else v.replace(',', '.')
        return float(v)

    @field_validator('currency', mode='before')
    def normalize_currency(cls, v):
        if not isinstance(v, str):
            return None
        v = v.strip().upper()
        return v if len(v) == 3 and v.isalpha() else None
