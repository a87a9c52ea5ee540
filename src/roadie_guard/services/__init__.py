"""
Roadie Guard services
"""
