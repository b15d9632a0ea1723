"""
Core utilities - error taxonomy shared by the controller layers.
"""
