"""
Settlement settings.

Read once from the environment (a `.env` file at the project root is loaded
by repositories.client / this module via python-dotenv). Every value has a
default so a development checkout runs without configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

from domain.fiscal import CompanyProfile, EmissionType, Environment

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Issuer used when no company_profile row exists (development/test database).
TEST_COMPANY_PROFILE = CompanyProfile(
    tax_id="1790012345001",
    legal_name="RESTAURANTE DE PRUEBA S.A.",
    trade_name="Restaurante de Prueba",
    head_office_address="Av. Amazonas N12-34, Quito",
    establishment_address="Av. Amazonas N12-34, Quito",
    establishment_code="001",
    emission_point_code="001",
    environment=Environment.TEST,
    emission_type=EmissionType.NORMAL,
    keeps_accounting=False,
)


@dataclass(frozen=True, slots=True)
class SettlementSettings:
    fiscal_timezone: str = "America/Guayaquil"
    default_vat_rate: Decimal = Decimal("12")
    default_tax_code: str = "2"
    sequence_ceiling: int = 999_999_999
    authority_timeout_seconds: float = 30.0
    authority_approval_rate: float = 0.9
    authority_simulated_delay: float = 2.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.default_vat_rate < 0:
            raise ValueError("DEFAULT_VAT_RATE must be >= 0")
        if not 1 <= self.sequence_ceiling <= 999_999_999:
            raise ValueError("SEQUENCE_CEILING must be between 1 and 999999999")
        if self.authority_timeout_seconds <= 0:
            raise ValueError("AUTHORITY_TIMEOUT_SECONDS must be > 0")
        if not 0 <= self.authority_approval_rate <= 1:
            raise ValueError("AUTHORITY_APPROVAL_RATE must be between 0 and 1")
        if self.authority_simulated_delay < 0:
            raise ValueError("AUTHORITY_SIMULATED_DELAY must be >= 0")

    @classmethod
    def from_env(cls) -> "SettlementSettings":
        """Build settings from environment variables, falling back to defaults."""

        return cls(
            fiscal_timezone=os.getenv("FISCAL_TIMEZONE", "America/Guayaquil"),
            default_vat_rate=Decimal(os.getenv("DEFAULT_VAT_RATE", "12")),
            default_tax_code=os.getenv("DEFAULT_TAX_CODE", "2"),
            sequence_ceiling=int(os.getenv("SEQUENCE_CEILING", "999999999")),
            authority_timeout_seconds=float(os.getenv("AUTHORITY_TIMEOUT_SECONDS", "30")),
            authority_approval_rate=float(os.getenv("AUTHORITY_APPROVAL_RATE", "0.9")),
            authority_simulated_delay=float(os.getenv("AUTHORITY_SIMULATED_DELAY", "2.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


__all__ = ["SettlementSettings", "TEST_COMPANY_PROFILE"]
