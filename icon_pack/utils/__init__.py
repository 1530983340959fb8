"""
Module: icon_pack.utils
Purpose: Utility helpers for icon_pack
"""

from icon_pack.utils.output_manager import OutputManager

__all__ = ["OutputManager"]
