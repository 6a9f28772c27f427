"""TopoCrawl utilities."""

from .interface_normalizer import InterfaceNormalizer
from .resource_helper import bundled_template_dir, get_resource_dir

__all__ = [
    'InterfaceNormalizer',
    'bundled_template_dir',
    'get_resource_dir',
]
