"""
Services for py2kobuki.
"""

from .config_loader import config_from_dict, load_driver_config, save_driver_config

__all__ = [
    'config_from_dict',
    'load_driver_config',
    'save_driver_config',
]
