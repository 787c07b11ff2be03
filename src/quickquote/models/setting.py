"""Key/value user settings (currency, tax rate, retention, invoice numbering)."""
from sqlmodel import Field, SQLModel


class AppSetting(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str  # JSON-encoded
