"""Service Integrations Module"""
