"""SettingsStore: user-editable settings persisted as JSON values."""
import json
from typing import Any, Dict

from sqlmodel import Session, select

from quickquote.config import Settings
from quickquote.models.invoice import ExtractionOptions
from quickquote.models.setting import AppSetting


def default_app_settings(settings: Settings) -> Dict[str, Any]:
    return {
        "default_currency": settings.default_currency,
        "default_tax_rate": settings.default_tax_rate,
        "audio_retention_days": settings.audio_retention_days,
        "business_name": "",
        "invoice_prefix": "QQ",
        "last_invoice_number": 0,
    }


class SettingsStore:
    """Reads and writes AppSetting rows, falling back to configured defaults."""

    def __init__(self, engine, settings: Settings):
        self.engine = engine
        self._defaults = default_app_settings(settings)

    def get(self, key: str) -> Any:
        with Session(self.engine) as s:
            row = s.get(AppSetting, key)
        if row is None:
            return self._defaults.get(key)
        try:
            return json.loads(row.value)
        except ValueError:
            return row.value

    def set(self, key: str, value: Any) -> None:
        with Session(self.engine) as s:
            row = s.get(AppSetting, key)
            if row is None:
                row = AppSetting(key=key, value=json.dumps(value))
            else:
                row.value = json.dumps(value)
            s.add(row)
            s.commit()

    def all(self) -> Dict[str, Any]:
        values = dict(self._defaults)
        with Session(self.engine) as s:
            for row in s.exec(select(AppSetting)).all():
                try:
                    values[row.key] = json.loads(row.value)
                except ValueError:
                    values[row.key] = row.value
        return values

    def extraction_options(self) -> ExtractionOptions:
        return ExtractionOptions(
            currency=self.get("default_currency"),
            tax_rate=float(self.get("default_tax_rate") or 0),
        )

    def next_invoice_number(self) -> str:
        """Allocate the next invoice number, e.g. "QQ-0007"."""
        number = int(self.get("last_invoice_number") or 0) + 1
        self.set("last_invoice_number", number)
        return f"{self.get('invoice_prefix')}-{number:04d}"
