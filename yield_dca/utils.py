"""Bunch of random utilities."""

import datetime
import logging
import os
from pathlib import Path
from typing import Optional

import coloredlogs
from eth_typing import HexAddress, HexStr
from web3 import Web3

from yield_dca.constants import ZERO_ADDRESS_STR
from yield_dca.errors import ZeroAddress


logger = logging.getLogger(__name__)


def native_datetime_utc_now() -> datetime.datetime:
    """Get current UTC time as a naive datetime object.

    Replacement for the deprecated datetime.datetime.utcnow().
    All engine timestamps are naive UTC.
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def ceil_div(a: int, b: int) -> int:
    """Integer division rounding up, Solidity ``mulDivUp`` style."""
    assert b > 0, f"Division by {b}"
    return -(-a // b)


def checksum_address(address: str | HexAddress | HexStr, allow_zero=False) -> HexAddress:
    """Normalise an account or contract address to the checksummed form.

    - Engine storage is keyed case-insensitively, but everything we emit is checksummed

    :raise ZeroAddress:
        If the address is the null address and ``allow_zero`` is not set
    """
    assert isinstance(address, str), f"Expected str address, got {type(address)}: {address}"
    assert Web3.is_address(address), f"Not an Ethereum address: {address}"
    if not allow_zero and address.lower() == ZERO_ADDRESS_STR:
        raise ZeroAddress(f"Zero address is not allowed here: {address}")
    return HexAddress(HexStr(Web3.to_checksum_address(address)))


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: str | Path = None,
    std_out_log_level: Optional[int] = None,
    clear_log_file=True,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in simulation scripts.
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level.upper(), None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-44s %(message)s"
        date_fmt = "%H:%M:%S"

    coloredlogs.install(level=std_out_log_level, fmt=fmt, datefmt=date_fmt)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # When using a file, the file is always logged with INFO level and
        # env var controls only terminal output
        min_level = min(logging.INFO, numeric_level)
        mode = "w" if clear_log_file else "a"

        file_handler = logging.FileHandler(log_file, mode=mode, encoding="utf-8")
        file_handler.setLevel(min_level)
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))

        root = logging.getLogger()
        root.setLevel(min_level)
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()
