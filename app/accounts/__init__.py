"""
Accounts app.

Owns the login identity (User) and the billing identity (Account) that
subscriptions, commissions and takeovers hang off.
"""
