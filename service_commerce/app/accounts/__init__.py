"""
Account management: signup, login, profile and dashboard.
"""
