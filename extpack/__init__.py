"""
ext-pack — bundle browser extensions into portable packs and install them
into Chromium-based browsers.

/ Empaqueta extensiones de navegador y las instala en navegadores Chromium.
"""

__version__ = "1.2.0"
