"""Configuration Module"""
