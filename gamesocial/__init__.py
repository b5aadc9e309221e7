"""Social relationships and relationship-data caching for the game catalog"""
__version__ = '0.1.0'
