"""Price feed discovery.

Find the Chainlink style feed a lending protocol reads for an asset.
See :py:func:`eth_oracle_mock.discovery.detector.detect_price_feed`.
"""
