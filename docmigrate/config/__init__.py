"""
Configuration management
"""
from .manager import ConfigManager, FrameworkConfig
