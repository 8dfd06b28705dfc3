"""Utility modules for AFK Bot"""
