"""
vfio-switch Device Templates

Jinja2 templates for libvirt device XML.
"""

from .loader import TemplateLoader, get_template_loader

__all__ = ["TemplateLoader", "get_template_loader"]
