"""
Order placement for the Commerce service.
"""
