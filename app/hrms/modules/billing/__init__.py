"""
Billing: plan catalogue, trial requests and trial accounts, Stripe subscriptions and webhooks.
"""
