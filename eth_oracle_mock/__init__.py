"""Force Chainlink style price feeds to report arbitrary prices on a local fork.

See :py:mod:`eth_oracle_mock.api` for the high level entry point.
"""
