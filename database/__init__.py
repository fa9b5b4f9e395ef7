"""
Database setup and seeding
"""
