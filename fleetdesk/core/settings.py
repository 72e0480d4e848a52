import os
from decimal import Decimal


class Settings:
    def __init__(self):
        self.app_name = "FleetDesk"
        self.api_version = "1.0.0"
        self.environment = "development"
        self.secret_key = os.getenv("FLEETDESK_SECRET_KEY", "CHANGE_ME")
        self.access_token_expire_minutes = 30
        self.database_url = os.getenv("FLEETDESK_DATABASE_URL", "sqlite:///./fleetdesk.db")

        # Rental defaults; every workflow call may override them per request.
        self.free_mileage_per_day = 100
        self.extra_mileage_rate = Decimal("20.00")
        self.tax_rate = Decimal("0")
        self.invoice_prefix = "INV"
        self.payment_terms_days = 7
        self.currency_symbol = "Rs."
        self.invoice_terms = "Payment is due within the payment terms stated on this invoice."

    def rental_config(self):
        # Local import keeps settings importable without the services package.
        from fleetdesk.services.pricing import RentalConfig

        return RentalConfig(
            free_mileage_per_day=self.free_mileage_per_day,
            extra_mileage_rate=self.extra_mileage_rate,
            tax_rate=self.tax_rate,
            invoice_prefix=self.invoice_prefix,
            payment_terms_days=self.payment_terms_days,
            currency_symbol=self.currency_symbol,
            invoice_terms=self.invoice_terms,
        )


_settings_instance = None


def get_settings():
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
