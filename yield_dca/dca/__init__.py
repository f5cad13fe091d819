"""Epoch based yield DCA.

Depositors park ERC-4626 vault shares in the engine. Once per epoch a keeper
converts the yield of all shares, the value above the deposited principal,
into a target token. Nobody's position is touched at that point.
Each position replays the epochs it missed the next time it is touched.

- :py:mod:`yield_dca.dca.position` per depositor principal and checkpoint
- :py:mod:`yield_dca.dca.epoch` append-only execution log and settlement tallies
- :py:mod:`yield_dca.dca.settlement` pure per position replay
- :py:mod:`yield_dca.dca.executor` precondition checks, redeem and swap
- :py:mod:`yield_dca.dca.engine` public calls, atomicity and access control

More info

- https://ethereum.org/en/developers/docs/standards/tokens/erc-4626/
- https://docs.openzeppelin.com/contracts/5.x/access-control
"""
