from __future__ import annotations

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    default_currency: str = Field(default="USD", alias="QUOTE_DEFAULT_CURRENCY")

    # Children at or below this age are not counted for the pass-through tax.
    pass_through_child_age_threshold: int = Field(
        default=2, alias="PASS_THROUGH_TAX_CHILD_AGE_THRESHOLD"
    )
    verification_tolerance: Decimal = Field(
        default=Decimal("0.01"), alias="VERIFICATION_TOLERANCE"
    )

    reference_data_path: str | None = Field(default=None, alias="REFERENCE_DATA_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"env_file": ".env", "extra": "ignore", "populate_by_name": True}


settings = Settings()
