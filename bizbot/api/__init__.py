"""HTTP API Module"""
