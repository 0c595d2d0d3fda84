"""
Leave module: requests, approval, yearly balances and post-approval processing.

Balances are deducted on approval, never on submission.
"""
