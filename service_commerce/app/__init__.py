"""
Application package for the Commerce service.
"""
