"""
Invoice Numbering

Numbers are PREFIX + zero-padded integer (INV00006). The integer is
the settings store's seed: the last number handed out.

IMPORTANT: preview() never writes. Only confirm (reserve) and
unconfirm (release) move the seed.
"""

from typing import Optional

import structlog

from contractor_billing.config.settings import InvoicingSettings
from contractor_billing.services.storage.interface import SettingsProvider


logger = structlog.get_logger(__name__)


def format_invoice_number(number: int, prefix: str = "INV", width: int = 5) -> str:
    """
    Format an allocated number.

    >>> format_invoice_number(6)
    'INV00006'
    """
    return f"{prefix}{number:0{width}d}"


def parse_invoice_number(invoice_number: str, prefix: str = "INV") -> Optional[int]:
    """Numeric part of an invoice number, or None if it is not ours."""
    if not invoice_number.startswith(prefix):
        return None
    digits = invoice_number[len(prefix):]
    return int(digits) if digits.isdigit() else None


class InvoiceNumbering:
    """Allocates and releases invoice numbers through the settings store."""

    def __init__(self, settings: SettingsProvider, config: InvoicingSettings):
        self._settings = settings
        self._config = config

    def format_number(self, number: int) -> str:
        return format_invoice_number(number, self._config.number_prefix, self._config.number_width)

    async def preview(self) -> str:
        """The number the next confirm would receive."""
        seed = await self._settings.get_invoice_seed()
        return self.format_number(seed + 1)

    async def reserve(self) -> str:
        number = await self._settings.reserve_next_number()
        return self.format_number(number)

    async def release(self, invoice_number: str) -> bool:
        """
        Hand a number back on unconfirm.

        Only the most recently allocated number can be handed back;
        anything else leaves a gap in the sequence.

        Returns:
            True if the seed was decremented
        """
        if not self._config.reuse_released_numbers:
            return False

        number = parse_invoice_number(invoice_number, self._config.number_prefix)
        if number is None:
            logger.warning("invoice_number_not_recognised", invoice_number=invoice_number)
            return False

        return await self._settings.release_number(number)

    async def restore(self, invoice_number: str) -> None:
        """Undo a successful release by reserving the number again."""
        reserved = await self.reserve()
        if reserved != invoice_number:
            logger.error(
                "invoice_number_restore_mismatch",
                expected=invoice_number,
                reserved=reserved,
            )
