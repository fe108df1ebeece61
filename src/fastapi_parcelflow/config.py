"""Parcelflow configuration."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from fastapi_parcelflow.types import Address

API_URL_STAGING = "https://test.myflyingbox.com/v2"
API_URL_PRODUCTION = "https://api.myflyingbox.com/v2"


class ParcelflowConfig(BaseSettings):
    """Runtime config injected into every engine component."""

    model_config = SettingsConfigDict(env_prefix="PARCELFLOW_")

    api_login: str = ""
    api_password: str = ""
    api_env: Literal["staging", "production"] = "staging"
    api_connect_timeout: float = 10.0
    api_timeout: float = 30.0

    shipper_name: str = ""
    shipper_company: str = ""
    shipper_street: str = ""
    shipper_city: str = ""
    shipper_postal_code: str = ""
    shipper_country: str = "FR"
    shipper_phone: str = ""
    shipper_email: str = ""

    max_parcel_weight: float = 30.0
    default_parcel_weight: float = 1.0
    default_currency: str = "EUR"

    quote_ttl_seconds: int = 1800

    webhook_enabled: bool = False
    webhook_secret: str = ""

    notifications_enabled: bool = True
    notification_timeout_seconds: float = 10.0

    @property
    def api_base_url(self) -> str:
        if self.api_env == "production":
            return API_URL_PRODUCTION
        return API_URL_STAGING

    @property
    def is_api_configured(self) -> bool:
        return bool(self.api_login and self.api_password)

    @property
    def is_shipper_address_complete(self) -> bool:
        return bool(self.shipper_city and self.shipper_postal_code)

    def shipper_address(self) -> Address:
        """Snapshot of the configured shipper address."""
        return Address(
            name=self.shipper_name,
            company=self.shipper_company,
            street=self.shipper_street,
            city=self.shipper_city,
            postal_code=self.shipper_postal_code,
            country=self.shipper_country,
            phone=self.shipper_phone,
            email=self.shipper_email,
        )
