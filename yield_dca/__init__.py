"""yield_dca package root.

Convert the yield of ERC-4626 vault shares to a target token, epoch by epoch,
and let every depositor pull their proportional share lazily.

- :py:mod:`yield_dca.dca` the engine: positions, epoch log, settlement and execution
- :py:mod:`yield_dca.factory` one engine per vault
- :py:mod:`yield_dca.testing` in-memory vault, token and swap collaborators

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"yield-dca needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
