"""Incremental export of image assets from layer names in a document tree."""

from layer_assets.naming.analyzer import analyze_layer_name
from layer_assets.naming.parser import parse_layer_name

__all__ = ["analyze_layer_name", "parse_layer_name"]
