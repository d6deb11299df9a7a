"""
Product catalog read paths.
"""
