"""Swap executor interface.

The engine does not route swaps itself. It hands the redeemed yield to a
:py:class:`Converter` together with an opaque routing payload prepared off-engine
by the keeper (e.g. Velora or 1delta calldata) and only checks what comes back.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from eth_typing import HexAddress
from hexbytes import HexBytes

from yield_dca.errors import AmountTooLow


logger = logging.getLogger(__name__)


class Converter(Protocol):
    """Swap one token to another for the engine."""

    #: Swapper contract address
    address: HexAddress

    def swap(
        self,
        token_in: HexAddress,
        token_out: HexAddress,
        amount_in: int,
        min_amount_out: int,
        routing_data: HexBytes,
        sender: HexAddress,
    ) -> int:
        """Pull ``amount_in`` of ``token_in`` from sender, send ``token_out`` back to sender.

        Raise if the swap cannot be done. The whole epoch execution fails with it.

        :return:
            Raw amount of token_out sent to sender
        """


@dataclass(slots=True, frozen=True)
class ConversionResult:
    """Swap outcome as seen by the engine."""

    #: Token we sold
    token_in: HexAddress

    #: Token we bought
    token_out: HexAddress

    #: Raw amount sold
    amount_in: int

    #: Raw amount the caller wanted at least
    amount_out_min: int

    #: Raw amount the converter returned
    amount_out: int

    @property
    def price(self) -> Decimal:
        """Raw token_out units per raw token_in unit."""
        if self.amount_in == 0:
            return Decimal(0)
        return Decimal(self.amount_out) / Decimal(self.amount_in)


def convert(
    converter: Converter,
    token_in: HexAddress,
    token_out: HexAddress,
    amount_in: int,
    min_amount_out: int,
    routing_data: HexBytes | bytes,
    sender: HexAddress,
) -> ConversionResult:
    """Run a swap and enforce the caller minimum.

    - Converters are expected to enforce ``min_amount_out`` themselves, but we do not trust them to

    :raise AmountTooLow:
        Converter returned less than ``min_amount_out``
    """
    assert amount_in > 0, f"Nothing to swap: {amount_in}"
    assert min_amount_out >= 0

    logger.info(
        "Converting %d %s to %s, minimum out %d, routing data %d bytes",
        amount_in,
        token_in,
        token_out,
        min_amount_out,
        len(routing_data),
    )

    amount_out = converter.swap(
        token_in,
        token_out,
        amount_in,
        min_amount_out,
        HexBytes(routing_data),
        sender,
    )

    assert type(amount_out) == int, f"Converter {converter} returned {type(amount_out)}"

    if amount_out < min_amount_out:
        raise AmountTooLow(
            f"Converter returned {amount_out} {token_out}, minimum was {min_amount_out}",
            amount_out=amount_out,
            min_amount_out=min_amount_out,
        )

    return ConversionResult(
        token_in=token_in,
        token_out=token_out,
        amount_in=amount_in,
        amount_out_min=min_amount_out,
        amount_out=amount_out,
    )
